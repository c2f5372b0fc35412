import pytest
from sqlalchemy.exc import IntegrityError

from conftest import order_request
from pos_core.errors import (
    AlreadyConfirmed,
    AlreadyPaid,
    InvalidRequestError,
    NotFoundError,
    PaymentRejected,
)
from pos_core.events import EventType
from pos_core.models import AuditAction, OrderPaymentStatus, Payment, PaymentMethod, PaymentStatus
from pos_core.store import OrderStore, PaymentStore


@pytest.fixture
def order(manager, catalog):
    return manager.create(order_request(catalog.cafe, catalog.latte))


def order_status(session, order_id):
    return OrderStore(session).get(order_id).payment_status


class TestCreatePayment:
    def test_transfer_payment_is_pending(self, ledger, order, session, publisher, audit):
        payment = ledger.create(order.id, PaymentMethod.TRANSFER, proof_url="https://example.test/proof.jpg")

        assert payment.status == PaymentStatus.PENDING
        assert payment.amount == order.total
        assert payment.company_id == order.company_id
        assert payment.outlet_id == order.outlet_id
        assert payment.proof_url == "https://example.test/proof.jpg"
        assert order_status(session, order.id) == OrderPaymentStatus.PENDING

        channels = [c for c, e, _ in publisher.events if e == EventType.PAYMENT_CREATED.value]
        assert channels == [f"staff:1:{order.outlet_id}", f"customer:{order.id}"]
        assert audit.records[-1].detail["status"] == "PENDING"

    def test_cash_marked_as_paid_settles(self, ledger, order, session):
        payment = ledger.create(order.id, PaymentMethod.CASH, mark_as_paid=True, actor_user_id=7, company_id=1)

        assert payment.status == PaymentStatus.PAID
        assert payment.confirmed_by_user_id == 7
        assert order_status(session, order.id) == OrderPaymentStatus.PAID

    def test_mark_as_paid_only_applies_to_cash(self, ledger, order):
        payment = ledger.create(order.id, PaymentMethod.QR, mark_as_paid=True, actor_user_id=7)
        assert payment.status == PaymentStatus.PENDING
        assert payment.confirmed_by_user_id is None

    def test_explicit_amount(self, ledger, order):
        payment = ledger.create(order.id, PaymentMethod.TRANSFER, amount=10000)
        assert payment.amount == 10000

    def test_negative_amount_rejected(self, ledger, order):
        with pytest.raises(InvalidRequestError):
            ledger.create(order.id, PaymentMethod.TRANSFER, amount=-1)

    def test_paid_order_rejects_new_payments(self, ledger, order):
        ledger.create(order.id, PaymentMethod.CASH, mark_as_paid=True)
        with pytest.raises(AlreadyPaid):
            ledger.create(order.id, PaymentMethod.TRANSFER)

    def test_unknown_or_foreign_order(self, ledger, order):
        with pytest.raises(NotFoundError):
            ledger.create(9999, PaymentMethod.CASH)
        with pytest.raises(NotFoundError):
            ledger.create(order.id, PaymentMethod.CASH, company_id=2)

    def test_method_disabled_for_outlet(self, ledger, manager, catalog):
        kiosk_order = manager.create(order_request(catalog.kiosk, catalog.tea))
        with pytest.raises(InvalidRequestError):
            ledger.create(kiosk_order.id, PaymentMethod.QR)


class TestConfirmAndReject:
    def test_confirm_pending_payment(self, ledger, order, session, audit):
        payment = ledger.create(order.id, PaymentMethod.TRANSFER)

        confirmed = ledger.confirm(payment.id, 1, actor_user_id=9, note="Checked bank app")

        assert confirmed.status == PaymentStatus.PAID
        assert confirmed.confirmed_by_user_id == 9
        assert confirmed.note == "Checked bank app"
        assert order_status(session, order.id) == OrderPaymentStatus.PAID
        assert audit.records[-1].action == AuditAction.PAYMENT_CONFIRM

    def test_confirm_twice_is_a_conflict(self, ledger, order):
        payment = ledger.create(order.id, PaymentMethod.TRANSFER)
        ledger.confirm(payment.id, 1, actor_user_id=9)

        with pytest.raises(AlreadyConfirmed):
            ledger.confirm(payment.id, 1, actor_user_id=9)

    def test_second_payment_cannot_be_settled(self, ledger, order):
        first = ledger.create(order.id, PaymentMethod.TRANSFER)
        second = ledger.create(order.id, PaymentMethod.QR)
        ledger.confirm(first.id, 1, actor_user_id=9)

        with pytest.raises(AlreadyPaid):
            ledger.confirm(second.id, 1, actor_user_id=9)

    def test_reject_sets_order_back_to_unpaid(self, ledger, order, session, audit):
        payment = ledger.create(order.id, PaymentMethod.TRANSFER)

        rejected = ledger.reject(payment.id, 1, actor_user_id=9, note="Amount mismatch")

        assert rejected.status == PaymentStatus.REJECTED
        assert rejected.note == "Amount mismatch"
        assert rejected.confirmed_by_user_id is None
        assert order_status(session, order.id) == OrderPaymentStatus.UNPAID
        assert audit.records[-1].action == AuditAction.PAYMENT_REJECT

    def test_rejected_payment_cannot_be_confirmed(self, ledger, order):
        payment = ledger.create(order.id, PaymentMethod.TRANSFER)
        ledger.reject(payment.id, 1, actor_user_id=9)

        with pytest.raises(PaymentRejected):
            ledger.confirm(payment.id, 1, actor_user_id=9)

    def test_paid_payment_cannot_be_rejected(self, ledger, order):
        payment = ledger.create(order.id, PaymentMethod.CASH, mark_as_paid=True)
        with pytest.raises(AlreadyConfirmed):
            ledger.reject(payment.id, 1, actor_user_id=9)

    def test_retry_after_rejection(self, ledger, order, session):
        rejected = ledger.create(order.id, PaymentMethod.TRANSFER)
        ledger.reject(rejected.id, 1, actor_user_id=9)

        cash = ledger.create(order.id, PaymentMethod.CASH, mark_as_paid=True, actor_user_id=9)

        assert cash.status == PaymentStatus.PAID
        assert order_status(session, order.id) == OrderPaymentStatus.PAID
        statuses = [p.status for p in ledger.find_by_order(order.id)]
        assert statuses == [PaymentStatus.PAID, PaymentStatus.REJECTED]

    def test_rejecting_stale_attempt_keeps_order_paid(self, ledger, order, session):
        transfer = ledger.create(order.id, PaymentMethod.TRANSFER)
        ledger.create(order.id, PaymentMethod.CASH, mark_as_paid=True, actor_user_id=9)

        rejected = ledger.reject(transfer.id, 1, actor_user_id=9)

        assert rejected.status == PaymentStatus.REJECTED
        assert order_status(session, order.id) == OrderPaymentStatus.PAID
        with pytest.raises(AlreadyPaid):
            ledger.create(order.id, PaymentMethod.QR)

    def test_other_tenant_cannot_confirm(self, ledger, order):
        payment = ledger.create(order.id, PaymentMethod.TRANSFER)
        with pytest.raises(NotFoundError):
            ledger.confirm(payment.id, 2, actor_user_id=9)

    def test_confirm_updates_are_published(self, ledger, order, publisher):
        payment = ledger.create(order.id, PaymentMethod.TRANSFER)
        publisher.events.clear()

        ledger.confirm(payment.id, 1, actor_user_id=9)

        assert [(c, e) for c, e, _ in publisher.events] == [
            (f"staff:1:{order.outlet_id}", EventType.PAYMENT_UPDATED.value),
            (f"customer:{order.id}", EventType.PAYMENT_UPDATED.value),
        ]
        assert publisher.events[0][2]["status"] == "PAID"


class TestConfirmByOrder:
    def test_confirms_latest_payment(self, ledger, order):
        ledger.reject(ledger.create(order.id, PaymentMethod.TRANSFER).id, 1, actor_user_id=9)
        latest = ledger.create(order.id, PaymentMethod.QR)

        confirmed = ledger.confirm_by_order(order.id, 1, actor_user_id=9)

        assert confirmed.id == latest.id
        assert confirmed.status == PaymentStatus.PAID

    def test_order_without_payments(self, ledger, order):
        with pytest.raises(NotFoundError) as exc_info:
            ledger.confirm_by_order(order.id, 1, actor_user_id=9)
        assert exc_info.value.detail == "Payment not found for this order"


class TestStoreGuards:
    def paid(self, order):
        return Payment(
            company_id=order.company_id,
            outlet_id=order.outlet_id,
            order_id=order.id,
            method=PaymentMethod.CASH,
            amount=order.total,
            status=PaymentStatus.PAID,
        )

    def test_second_paid_row_is_refused(self, session, order):
        store = PaymentStore(session)
        store.add(self.paid(order))

        with pytest.raises(IntegrityError):
            store.add(self.paid(order))
        assert [p.status for p in store.list_by_order(order.id)] == [PaymentStatus.PAID]

    def test_transition_only_matches_expected_status(self, session, order, ledger):
        payment = ledger.create(order.id, PaymentMethod.TRANSFER)
        store = PaymentStore(session)

        assert store.transition(payment.id, 1, PaymentStatus.PENDING, PaymentStatus.REJECTED)
        assert not store.transition(payment.id, 1, PaymentStatus.PENDING, PaymentStatus.PAID)
        assert not store.transition(payment.id, 2, PaymentStatus.REJECTED, PaymentStatus.PAID)
        assert store.get(payment.id).status == PaymentStatus.REJECTED

    def test_create_racing_a_settlement(self, session, order, ledger, monkeypatch):
        PaymentStore(session).add(self.paid(order))
        # The pre-check ran before the other request committed
        monkeypatch.setattr(ledger.payments, "find_paid", lambda order_id: None)

        with pytest.raises(AlreadyPaid):
            ledger.create(order.id, PaymentMethod.CASH, mark_as_paid=True)

    def test_confirm_racing_a_rejection(self, session, order, ledger, monkeypatch):
        payment = ledger.create(order.id, PaymentMethod.TRANSFER)
        transition = ledger.payments.transition

        def rejected_in_between(*args, **kwargs):
            PaymentStore(session).transition(payment.id, 1, PaymentStatus.PENDING, PaymentStatus.REJECTED)
            return transition(*args, **kwargs)

        monkeypatch.setattr(ledger.payments, "transition", rejected_in_between)

        with pytest.raises(PaymentRejected):
            ledger.confirm(payment.id, 1, actor_user_id=9)
        assert order_status(session, order.id) == OrderPaymentStatus.PENDING

    def test_confirm_racing_another_confirmation(self, session, order, ledger, monkeypatch):
        payment = ledger.create(order.id, PaymentMethod.TRANSFER)
        transition = ledger.payments.transition

        def confirmed_in_between(*args, **kwargs):
            PaymentStore(session).transition(payment.id, 1, PaymentStatus.PENDING, PaymentStatus.PAID)
            return transition(*args, **kwargs)

        monkeypatch.setattr(ledger.payments, "transition", confirmed_in_between)

        with pytest.raises(AlreadyConfirmed):
            ledger.confirm(payment.id, 1, actor_user_id=9)

    def test_confirm_racing_a_cash_settlement(self, session, order, ledger, monkeypatch):
        payment = ledger.create(order.id, PaymentMethod.TRANSFER)
        transition = ledger.payments.transition

        def settled_in_between(*args, **kwargs):
            PaymentStore(session).add(self.paid(order))
            return transition(*args, **kwargs)

        monkeypatch.setattr(ledger.payments, "transition", settled_in_between)

        with pytest.raises(AlreadyPaid):
            ledger.confirm(payment.id, 1, actor_user_id=9)
