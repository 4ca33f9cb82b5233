"""
Balance and collection tests.

Verifies:
- credit = max(0, total - paid - cheque - return)
- Saving publishes one pending record per non-zero cheque/credit balance
- Re-saving refreshes records in place and never retracts them
- Outstanding above the total needs explicit confirmation
- Collection verification: complete and partial payments
- Cheques taken on completion clear into amount paid or bounce
"""

from datetime import date

import pytest

from distro.models import CollectionRecord, Cheque
from distro.models.cheques import CHEQUE_RECEIVED, CHEQUE_CLEARED, CHEQUE_BOUNCED
from distro.models.orders import COLLECTION_PENDING, COLLECTION_COMPLETE, ORDER_CANCELLED
from distro.services import order_service, collection_service, cheque_service
from distro.services.order_service import OrderRequest
from distro.services.balance_service import (
    BalanceInput,
    BalanceError,
    BalanceConfirmationRequired,
    derive_credit_balance,
    compute_balances,
    preview_balances,
    save_balances,
)
from distro.services.collection_service import CollectionError
from distro.services.cheque_service import ChequeError
from distro.services.catalog_service import customer_outstanding
from distro.validation import ValidationError


def _thousand_cent_order(actor, customer, products):
    """10 x Water at 100 cents: total 1000."""
    return order_service.create_order(
        actor, OrderRequest(customer_id=customer.id, quantities={products["water"].id: 10}),
    )


def _records(session, order_id):
    rows = session.query(CollectionRecord).filter_by(order_id=order_id).all()
    return {r.collection_type: r for r in rows}


def _cheque(**overrides):
    details = {
        "payer_name": "Corner Shop",
        "bank": "First Bank",
        "cheque_number": "000123",
        "cheque_date": "2026-10-17",
        "deposit_date": "2026-10-24",
        "amount_cents": 300,
    }
    details.update(overrides)
    return details


# =============================================================================
# DERIVATION
# =============================================================================


class TestDerivation:
    def test_credit_is_the_remainder(self):
        assert derive_credit_balance(1000, 400, 300, 0) == 300
        assert derive_credit_balance(10000, 3000, 2000, 1000) == 4000

    def test_credit_never_negative(self):
        assert derive_credit_balance(1000, 800, 300, 100) == 0

    def test_diff_hint(self):
        result = compute_balances(1000, BalanceInput(amount_paid_cents=1000, cheque_balance_cents=300))
        assert result["credit_balance_cents"] == 0
        assert result["balance_diff_cents"] == -300
        assert result["is_balanced"] is False
        assert result["requires_confirmation"] is False

    def test_balanced_split(self):
        result = compute_balances(1000, BalanceInput(amount_paid_cents=400, cheque_balance_cents=300))
        assert result["balance_diff_cents"] == 0
        assert result["is_balanced"] is True

    def test_cheque_above_total_requires_confirmation(self):
        result = compute_balances(1000, BalanceInput(cheque_balance_cents=1200))
        assert result["requires_confirmation"] is True

    def test_preview_writes_nothing(self, db_session, admin, customer, products):
        order = _thousand_cent_order(admin, customer, products)
        result = preview_balances(order.id, BalanceInput(amount_paid_cents=250))

        assert result["credit_balance_cents"] == 750
        assert order_service.get_order(order.id).amount_paid_cents == 0
        assert db_session.query(CollectionRecord).count() == 0


# =============================================================================
# SAVE + PUBLISH
# =============================================================================


class TestSaveBalances:
    def test_publishes_cheque_and_credit_records(self, db_session, sales_rep, customer, products):
        order = _thousand_cent_order(sales_rep, customer, products)

        saved = save_balances(order.id, sales_rep, BalanceInput(amount_paid_cents=400, cheque_balance_cents=300))

        assert saved.credit_balance_cents == 300
        assert saved.balance_diff_cents == 0
        records = _records(db_session, order.id)
        assert set(records) == {"cheque", "credit"}
        assert records["cheque"].amount_cents == 300
        assert records["credit"].amount_cents == 300
        assert all(r.status == COLLECTION_PENDING for r in records.values())
        assert records["credit"].collected_by == "Rae Sales"
        assert records["credit"].customer_id == customer.id

    def test_resave_refreshes_and_never_retracts(self, db_session, admin, customer, products):
        order = _thousand_cent_order(admin, customer, products)
        save_balances(order.id, admin, BalanceInput(amount_paid_cents=400, cheque_balance_cents=300))

        saved = save_balances(order.id, admin, BalanceInput(amount_paid_cents=1000, cheque_balance_cents=300))

        assert saved.credit_balance_cents == 0
        assert saved.balance_diff_cents == -300
        records = _records(db_session, order.id)
        assert db_session.query(CollectionRecord).count() == 2
        assert records["cheque"].amount_cents == 300
        # Credit went to zero but its record stays for the verification workflow
        assert records["credit"].amount_cents == 300
        assert records["credit"].status == COLLECTION_PENDING

    def test_zero_balances_publish_nothing(self, db_session, admin, customer, products):
        order = _thousand_cent_order(admin, customer, products)
        save_balances(order.id, admin, BalanceInput(amount_paid_cents=1000))
        assert db_session.query(CollectionRecord).count() == 0

    def test_upsert_keeps_one_record_per_type(self, db_session, admin, customer, products):
        order = _thousand_cent_order(admin, customer, products)
        for paid in (100, 200, 300):
            save_balances(order.id, admin, BalanceInput(amount_paid_cents=paid, cheque_balance_cents=50))

        records = _records(db_session, order.id)
        assert db_session.query(CollectionRecord).count() == 2
        assert records["credit"].amount_cents == 1000 - 300 - 50

    def test_outstanding_above_total_needs_confirmation(self, db_session, admin, customer, products):
        order = _thousand_cent_order(admin, customer, products)

        with pytest.raises(BalanceConfirmationRequired):
            save_balances(order.id, admin, BalanceInput(cheque_balance_cents=1200))

        unchanged = order_service.get_order(order.id)
        assert unchanged.cheque_balance_cents == 0
        assert db_session.query(CollectionRecord).count() == 0

        saved = save_balances(order.id, admin, BalanceInput(cheque_balance_cents=1200), confirm=True)
        assert saved.cheque_balance_cents == 1200
        assert _records(db_session, order.id)["cheque"].amount_cents == 1200

    def test_cancelled_order_is_rejected(self, db_session, admin, customer, products):
        order = _thousand_cent_order(admin, customer, products)
        order_service.set_status(admin, order.id, ORDER_CANCELLED)
        with pytest.raises(BalanceError):
            save_balances(order.id, admin, BalanceInput(amount_paid_cents=100))


# =============================================================================
# VERIFICATION WORKFLOW
# =============================================================================


class TestCollectionWorkflow:
    @pytest.fixture
    def published(self, db_session, admin, customer, products):
        order = _thousand_cent_order(admin, customer, products)
        save_balances(order.id, admin, BalanceInput(amount_paid_cents=400, cheque_balance_cents=300))
        return order, _records(db_session, order.id)

    def test_completing_credit_moves_it_to_paid(self, db_session, secretary, published):
        order, records = published

        record = collection_service.complete_collection(records["credit"].id, secretary, "cash at door")

        assert record.status == COLLECTION_COMPLETE
        assert record.completed_by == "Sam Secretary"
        assert record.completed_at is not None
        refreshed = order_service.get_order(order.id)
        assert refreshed.amount_paid_cents == 700
        assert refreshed.credit_balance_cents == 0
        assert refreshed.cheque_balance_cents == 300

    def test_completing_cheque_records_cheques_without_moving_balance(self, db_session, secretary, published):
        order, records = published

        record = collection_service.complete_collection(
            records["cheque"].id, secretary, cheques=[_cheque(amount_cents=300)],
        )

        assert record.status == COLLECTION_COMPLETE
        assert [c.status for c in record.cheques] == [CHEQUE_RECEIVED]
        assert record.cheques[0].cheque_date == date(2026, 10, 17)
        refreshed = order_service.get_order(order.id)
        assert refreshed.amount_paid_cents == 400
        assert refreshed.cheque_balance_cents == 300

    def test_cheque_collection_needs_cheque_details(self, db_session, secretary, published):
        _, records = published

        with pytest.raises(ValidationError):
            collection_service.complete_collection(records["cheque"].id, secretary)
        with pytest.raises(ValidationError):
            collection_service.complete_collection(
                records["cheque"].id, secretary, cheques=[_cheque(bank="")],
            )

        record = db_session.get(CollectionRecord, records["cheque"].id)
        assert record.status == COLLECTION_PENDING
        assert cheque_service.list_cheques() == []

    def test_credit_collection_rejects_cheque_details(self, db_session, secretary, published):
        _, records = published
        with pytest.raises(ValidationError):
            collection_service.complete_collection(
                records["credit"].id, secretary, cheques=[_cheque()],
            )

    def test_cannot_complete_twice(self, db_session, secretary, published):
        _, records = published
        collection_service.complete_collection(records["credit"].id, secretary)
        with pytest.raises(CollectionError):
            collection_service.complete_collection(records["credit"].id, secretary)

    def test_partial_credit_payment(self, db_session, secretary, published):
        order, records = published

        record = collection_service.record_partial_payment(records["credit"].id, secretary, 100, "first part")

        assert record.amount_cents == 200
        assert record.status == COLLECTION_PENDING
        assert "Notes: first part" in record.notes
        refreshed = order_service.get_order(order.id)
        assert refreshed.credit_balance_cents == 200
        assert refreshed.amount_paid_cents == 500

    def test_partial_amount_must_be_below_record_amount(self, db_session, secretary, published):
        _, records = published
        for amount in (0, 300, 500):
            with pytest.raises(CollectionError):
                collection_service.record_partial_payment(records["cheque"].id, secretary, amount)
        assert db_session.get(CollectionRecord, records["cheque"].id).amount_cents == 300

    def test_completed_record_reopens_on_new_balance(self, db_session, admin, secretary, published):
        order, records = published
        collection_service.complete_collection(records["credit"].id, secretary)

        save_balances(order.id, admin, BalanceInput(amount_paid_cents=500, cheque_balance_cents=300))

        record = db_session.get(CollectionRecord, records["credit"].id)
        assert record.status == COLLECTION_PENDING
        assert record.amount_cents == 200

    def test_list_filters(self, db_session, published):
        order, _ = published
        credit = collection_service.list_collections(collection_type="credit")
        assert [r.collection_type for r in credit] == ["credit"]
        assert len(collection_service.list_collections(order_id=order.id, status=COLLECTION_PENDING)) == 2
        assert collection_service.list_collections(status=COLLECTION_COMPLETE) == []


# =============================================================================
# CHEQUE CLEARING
# =============================================================================


class TestChequeClearing:
    @pytest.fixture
    def received(self, db_session, admin, secretary, customer, products):
        """Order of 1000 paid 400 cash, 300 by two cheques, 300 on credit."""
        order = _thousand_cent_order(admin, customer, products)
        save_balances(order.id, admin, BalanceInput(amount_paid_cents=400, cheque_balance_cents=300))
        record = _records(db_session, order.id)["cheque"]
        collection_service.complete_collection(
            record.id, secretary,
            cheques=[
                _cheque(cheque_number="000123", amount_cents=200),
                _cheque(cheque_number="000124", amount_cents=100, deposit_date=None),
            ],
        )
        cheques = {c.cheque_number: c for c in cheque_service.list_cheques(order_id=order.id)}
        return order, cheques

    def test_clearing_moves_cheque_balance_into_paid(self, db_session, secretary, customer, received):
        order, cheques = received

        cleared = cheque_service.clear_cheque(cheques["000123"].id, secretary)

        assert cleared.status == CHEQUE_CLEARED
        assert cleared.cleared_at is not None
        refreshed = order_service.get_order(order.id)
        assert refreshed.cheque_balance_cents == 100
        assert refreshed.amount_paid_cents == 600
        assert refreshed.balance_diff_cents == 0

        cheque_service.clear_cheque(cheques["000124"].id, secretary)

        refreshed = order_service.get_order(order.id)
        assert refreshed.cheque_balance_cents == 0
        assert refreshed.amount_paid_cents == 700
        assert customer_outstanding(customer.id)["cheque_balance_cents"] == 0

    def test_clearing_never_drives_balance_negative(self, db_session, admin, secretary, received):
        order, cheques = received
        save_balances(order.id, admin, BalanceInput(amount_paid_cents=550, cheque_balance_cents=150))

        cheque_service.clear_cheque(cheques["000123"].id, secretary)

        refreshed = order_service.get_order(order.id)
        assert refreshed.cheque_balance_cents == 0
        assert refreshed.amount_paid_cents == 700

    def test_bounced_cheque_leaves_balance_outstanding(self, db_session, secretary, received):
        order, cheques = received

        bounced = cheque_service.bounce_cheque(cheques["000124"].id, secretary, "insufficient funds")

        assert bounced.status == CHEQUE_BOUNCED
        assert bounced.bounced_at is not None
        assert "insufficient funds" in bounced.notes
        refreshed = order_service.get_order(order.id)
        assert refreshed.cheque_balance_cents == 300
        assert refreshed.amount_paid_cents == 400

    def test_final_cheques_cannot_change(self, db_session, secretary, received):
        _, cheques = received
        cheque_service.clear_cheque(cheques["000123"].id, secretary)
        cheque_service.bounce_cheque(cheques["000124"].id, secretary)

        with pytest.raises(ChequeError):
            cheque_service.clear_cheque(cheques["000123"].id, secretary)
        with pytest.raises(ChequeError):
            cheque_service.clear_cheque(cheques["000124"].id, secretary)
        with pytest.raises(ChequeError):
            cheque_service.bounce_cheque(cheques["000123"].id, secretary)

    def test_list_filters(self, db_session, secretary, received):
        order, cheques = received
        cheque_service.clear_cheque(cheques["000123"].id, secretary)

        pending = cheque_service.list_cheques(status=CHEQUE_RECEIVED)
        assert [c.cheque_number for c in pending] == ["000124"]
        assert len(cheque_service.list_cheques(order_id=order.id)) == 2

    def test_deleting_order_removes_its_cheques(self, db_session, secretary, received):
        order, _ = received
        order_id = order.id

        order_service.delete_order(secretary, order_id, "Password123")

        assert db_session.query(Cheque).filter_by(order_id=order_id).count() == 0
        assert db_session.query(CollectionRecord).filter_by(order_id=order_id).count() == 0
