"""Background payment reconciliation with real threads against the fake gateway."""

import time
from datetime import timedelta

import pytest
from bistro.domain import bistro
from bistro.order.confirmation import confirm_order
from bistro.order.lifecycle import cancel_order
from bistro.order.order import Order, PaymentStatus
from bistro.payment.authorization import AuthorizationStatus
from bistro.payment.initiation import initiate_payment
from bistro.payment.reconciliation import payment_status
from bistro.payment.watcher import ExpirySweeper, PaymentWatcher, set_watcher
from bistro.shared.clock import utcnow
from protean import current_domain

POLL = 0.05


def _wait_until(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(POLL)
    return predicate()


@pytest.fixture()
def watcher():
    installed = PaymentWatcher(bistro, poll_interval=POLL)
    set_watcher(installed)
    return installed


@pytest.fixture()
def confirmed_order(rice_kitchen, make_order):
    order_id = make_order(rice_kitchen["dish_id"])
    confirm_order(order_id)
    return order_id


def _payment(order_id):
    return current_domain.repository_for(Order).get(order_id).payment_status


class TestPaymentWatcher:
    def test_initiation_starts_a_watch(self, confirmed_order, gateway, watcher):
        authorization_id = initiate_payment(confirmed_order)
        assert watcher.is_watching(authorization_id)

    def test_gateway_success_is_picked_up(self, confirmed_order, gateway, watcher):
        authorization_id = initiate_payment(confirmed_order)
        gateway.settle(payment_status(authorization_id)["external_reference"], "succeeded")

        watcher.join(authorization_id, timeout=5)

        assert not watcher.is_watching(authorization_id)
        assert payment_status(authorization_id)["status"] == AuthorizationStatus.SUCCEEDED.value
        assert _payment(confirmed_order) == PaymentStatus.PAID.value

    def test_gateway_decline_is_picked_up(self, confirmed_order, gateway, watcher):
        authorization_id = initiate_payment(confirmed_order)
        gateway.settle(payment_status(authorization_id)["external_reference"], "declined")

        watcher.join(authorization_id, timeout=5)

        snapshot = payment_status(authorization_id)
        assert snapshot["status"] == AuthorizationStatus.FAILED.value
        assert snapshot["failure_reason"] == "Card declined"
        assert _payment(confirmed_order) == PaymentStatus.FAILED.value

    def test_watch_expires_the_authorization(self, confirmed_order, gateway, watcher):
        authorization_id = initiate_payment(confirmed_order, expires_at=utcnow() + timedelta(seconds=0.3))

        watcher.join(authorization_id, timeout=5)

        assert payment_status(authorization_id)["status"] == AuthorizationStatus.EXPIRED.value
        assert _payment(confirmed_order) == PaymentStatus.UNPAID.value

    def test_outage_is_tolerated(self, confirmed_order, gateway, watcher):
        authorization_id = initiate_payment(confirmed_order)
        gateway.configure(available=False)
        assert _wait_until(lambda: sum(c["method"] == "fetch_status" for c in gateway.calls) >= 2)
        assert watcher.is_watching(authorization_id)

        gateway.configure(available=True)
        gateway.settle(payment_status(authorization_id)["external_reference"], "succeeded")
        watcher.join(authorization_id, timeout=5)

        assert _payment(confirmed_order) == PaymentStatus.PAID.value

    def test_order_cancellation_stops_the_watch(self, confirmed_order, gateway, watcher):
        authorization_id = initiate_payment(confirmed_order)
        cancel_order(confirmed_order, "Customer left")

        watcher.join(authorization_id, timeout=5)

        assert not watcher.is_watching(authorization_id)
        assert payment_status(authorization_id)["status"] == AuthorizationStatus.CANCELLED.value

    def test_shutdown_stops_every_watch(self, rice_kitchen, make_order, gateway, watcher):
        authorization_ids = [initiate_payment(make_order(rice_kitchen["dish_id"])) for _ in range(3)]

        watcher.shutdown(timeout=5)

        assert not any(watcher.is_watching(a) for a in authorization_ids)
        for authorization_id in authorization_ids:
            assert payment_status(authorization_id)["status"] == AuthorizationStatus.AWAITING_PAYMENT_METHOD.value

    def test_stopped_watcher_ignores_new_authorizations(self, confirmed_order, gateway, watcher):
        watcher.shutdown()
        authorization_id = initiate_payment(confirmed_order)
        assert not watcher.is_watching(authorization_id)


class TestExpirySweeper:
    def test_sweep_once_expires_unwatched_authorizations(self, confirmed_order, gateway):
        authorization_id = initiate_payment(confirmed_order, expires_at=utcnow() + timedelta(seconds=0.1))
        time.sleep(0.2)

        expired = ExpirySweeper(bistro, interval=POLL).sweep_once()

        assert expired == [authorization_id]
        assert _payment(confirmed_order) == PaymentStatus.UNPAID.value

    def test_running_sweeper_expires_in_background(self, confirmed_order, gateway):
        authorization_id = initiate_payment(confirmed_order, expires_at=utcnow() + timedelta(seconds=0.1))
        sweeper = ExpirySweeper(bistro, interval=POLL)
        sweeper.start()
        try:
            assert _wait_until(
                lambda: payment_status(authorization_id)["status"] == AuthorizationStatus.EXPIRED.value
            )
        finally:
            sweeper.stop()
