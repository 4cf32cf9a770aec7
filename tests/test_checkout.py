"""Tests for the checkout state machine."""

import pytest

from services.cart_service.cart_store import CartStore
from services.cart_service.checkout import CheckoutSession, CheckoutStep
from services.cart_service.notifications import CollectingNotifier
from shared.exceptions import CheckoutStepError, OrderSubmissionFailure
from shared.schemas import PaymentMethod
from tests.fakes import MemoryStorage, RecordingOrderClient


@pytest.fixture()
def notifier():
    return CollectingNotifier()


@pytest.fixture()
def store(laptop, notifier):
    store = CartStore(MemoryStorage(), notifier=notifier)
    store.hydrate()
    store.add_item(laptop, 2)
    return store


@pytest.fixture()
def order_client():
    return RecordingOrderClient()


def _session(store, order_client, notifier, addresses=()):
    return CheckoutSession(store, order_client, user_id="user-42", addresses=addresses, notifier=notifier)


def _to_review(session, address):
    session.select_address(address)
    session.proceed()
    session.select_payment_method(PaymentMethod.UPI)
    session.proceed()


class TestCheckoutStart:
    def test_empty_cart_cannot_check_out(self, order_client):
        store = CartStore(MemoryStorage())
        store.hydrate()
        with pytest.raises(CheckoutStepError, match="Cart is empty"):
            CheckoutSession(store, order_client, user_id="user-42")

    def test_starts_selecting_address(self, store, order_client, notifier):
        session = _session(store, order_client, notifier)
        assert session.step == CheckoutStep.SELECTING_ADDRESS
        assert session.payment_method is None

    def test_default_address_is_preselected(self, store, order_client, notifier, home_address, work_address):
        session = _session(store, order_client, notifier, addresses=[work_address, home_address])
        assert session.selected_address == home_address


class TestCheckoutNavigation:
    def test_cannot_leave_address_step_without_address(self, store, order_client, notifier):
        session = _session(store, order_client, notifier)
        with pytest.raises(CheckoutStepError, match="delivery address"):
            session.proceed()
        assert session.step == CheckoutStep.SELECTING_ADDRESS

    def test_cannot_leave_payment_step_without_method(self, store, order_client, notifier, home_address):
        session = _session(store, order_client, notifier, addresses=[home_address])
        session.proceed()
        with pytest.raises(CheckoutStepError, match="payment method"):
            session.proceed()
        assert session.step == CheckoutStep.SELECTING_PAYMENT

    def test_forward_and_back(self, store, order_client, notifier, home_address):
        session = _session(store, order_client, notifier, addresses=[home_address])
        assert session.proceed() == CheckoutStep.SELECTING_PAYMENT
        session.select_payment_method("COD")
        assert session.proceed() == CheckoutStep.REVIEWING_ORDER
        assert session.back() == CheckoutStep.SELECTING_PAYMENT
        assert session.back() == CheckoutStep.SELECTING_ADDRESS

    def test_cannot_go_back_from_first_step(self, store, order_client, notifier):
        session = _session(store, order_client, notifier)
        with pytest.raises(CheckoutStepError):
            session.back()

    def test_cannot_proceed_past_review(self, store, order_client, notifier, home_address):
        session = _session(store, order_client, notifier)
        _to_review(session, home_address)
        with pytest.raises(CheckoutStepError):
            session.proceed()

    def test_selections_only_in_their_step(self, store, order_client, notifier, home_address):
        session = _session(store, order_client, notifier)
        with pytest.raises(CheckoutStepError):
            session.select_payment_method(PaymentMethod.CARD)
        session.select_address(home_address)
        session.proceed()
        with pytest.raises(CheckoutStepError):
            session.select_address(home_address)

    def test_unknown_payment_method(self, store, order_client, notifier, home_address):
        session = _session(store, order_client, notifier, addresses=[home_address])
        session.proceed()
        with pytest.raises(ValueError):
            session.select_payment_method("Cheque")


class TestAddAddress:
    def test_first_address_becomes_selection(self, store, order_client, notifier, work_address):
        session = _session(store, order_client, notifier)
        session.add_address(work_address)
        assert session.selected_address == work_address
        assert notifier.messages[-1] == {"level": "success", "message": "Address added successfully"}

    def test_non_default_address_does_not_replace_selection(
        self, store, order_client, notifier, home_address, work_address
    ):
        session = _session(store, order_client, notifier, addresses=[home_address])
        session.add_address(work_address)
        assert session.selected_address == home_address
        assert session.addresses == [home_address, work_address]


class TestPlaceOrder:
    def test_only_from_review(self, store, order_client, notifier, home_address):
        session = _session(store, order_client, notifier, addresses=[home_address])
        assert not session.can_place_order
        with pytest.raises(CheckoutStepError):
            session.place_order()
        assert order_client.requests == []

    def test_success_clears_cart(self, store, order_client, notifier, home_address):
        session = _session(store, order_client, notifier)
        _to_review(session, home_address)

        assert session.can_place_order
        assert session.place_order() == "VD2610180001"
        assert session.step == CheckoutStep.ORDER_PLACED
        assert session.order_id == "VD2610180001"
        assert store.items == ()
        assert notifier.messages[-1] == {"level": "success", "message": "Order placed successfully!"}

        request = order_client.requests[0]
        assert request.user_id == "user-42"
        assert request.payment_method == PaymentMethod.UPI
        assert request.shipping_address == home_address
        assert request.items[0]["_id"] == "1"
        assert request.items[0]["quantity"] == 2

    def test_failure_keeps_cart_and_step(self, store, notifier, home_address):
        order_client = RecordingOrderClient(error="Order service unavailable")
        session = _session(store, order_client, notifier)
        _to_review(session, home_address)

        with pytest.raises(OrderSubmissionFailure):
            session.place_order()

        assert session.step == CheckoutStep.REVIEWING_ORDER
        assert store.get_item_quantity("1") == 2
        assert session.order_id is None
        assert notifier.messages[-1] == {"level": "error", "message": "Failed to place order"}

    def test_summary_prices_cart(self, store, order_client, home_address):
        session = CheckoutSession(store, order_client, user_id="user-42", discount=100)
        summary = session.summary()
        assert summary.subtotal == 2000
        assert summary.gst == 360
        assert summary.shipping == 0
        assert summary.total == 2260
