"""BDD tests for confirming orders against the ingredient ledger."""

from pytest_bdd import scenarios

scenarios("features/rice_scenario.feature")
