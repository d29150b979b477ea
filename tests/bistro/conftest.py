import pytest
from protean.integrations.pytest import DomainFixture


@pytest.fixture(scope="session")
def bistro_bed():
    from bistro.domain import bistro

    bed = DomainFixture(bistro)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(bistro_bed):
    with bistro_bed.domain_context():
        yield


@pytest.fixture(autouse=True)
def run_around_tests(_ctx):
    """Reset process-wide adapters and infrastructure after every test."""
    yield

    from bistro.config import get_settings
    from bistro.dispatch import reset_dispatcher
    from bistro.gateway import reset_gateway
    from bistro.payment.watcher import reset_watcher
    from bistro.shared.locks import ingredient_locks, order_locks
    from protean import current_domain

    reset_watcher()
    reset_gateway()
    reset_dispatcher()
    ingredient_locks.reset()
    order_locks.reset()
    get_settings.cache_clear()

    for _, provider in current_domain.providers.items():
        provider._data_reset()
    current_domain.event_store.store._data_reset()


@pytest.fixture()
def gateway():
    from bistro.gateway import set_gateway
    from bistro.gateway.fake_adapter import FakeGateway

    fake = FakeGateway()
    set_gateway(fake)
    return fake


@pytest.fixture()
def dispatcher():
    from bistro.dispatch import set_dispatcher
    from bistro.dispatch.recording_adapter import RecordingDispatcher

    recording = RecordingDispatcher()
    set_dispatcher(recording)
    return recording


@pytest.fixture()
def settings(monkeypatch):
    """Override BISTRO_* settings for one test: ``settings(PAYMENT_TTL_MINUTES=1)``."""
    from bistro.config import get_settings

    def _override(**values):
        for key, value in values.items():
            monkeypatch.setenv(f"BISTRO_{key}", str(value))
        get_settings.cache_clear()
        return get_settings()

    return _override


# ---------------------------------------------------------------------------
# Kitchen builders
# ---------------------------------------------------------------------------
@pytest.fixture()
def make_ingredient():
    from bistro.ingredient.registration import register_ingredient

    def _make(name="Rice", unit_of_measure="g", initial_stock=1000.0, min_stock=0.0, max_stock=None):
        return register_ingredient(
            name=name,
            unit_of_measure=unit_of_measure,
            min_stock=min_stock,
            max_stock=max_stock,
            initial_stock=initial_stock,
        )

    return _make


@pytest.fixture()
def make_menu_item():
    from bistro.menu.management import add_menu_item

    def _make(name="Fried Rice", price=10.0, requirements=None, is_available=True):
        return add_menu_item(name=name, price=price, requirements=requirements or [], is_available=is_available)

    return _make


@pytest.fixture()
def rice_kitchen(make_ingredient, make_menu_item):
    """Rice at 1000 g and a Fried Rice dish that needs 300 g per plate."""
    rice_id = make_ingredient(name="Rice", initial_stock=1000.0, min_stock=200.0)
    dish_id = make_menu_item(
        name="Fried Rice",
        price=12.5,
        requirements=[{"ingredient_id": rice_id, "quantity_per_unit": 300.0}],
    )
    return {"rice_id": rice_id, "dish_id": dish_id}


@pytest.fixture()
def make_order():
    from bistro.order.placement import place_order

    def _make(menu_item_id, quantity=1, **kwargs):
        return place_order([{"menu_item_id": menu_item_id, "quantity": quantity}], **kwargs)

    return _make
