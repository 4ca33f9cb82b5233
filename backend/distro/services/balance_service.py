# Overview: Order balance derivation and saving (paid / cheque / credit / return).

"""
Order balances

Four fields split an order's total: amount paid, cheque balance, credit
balance and return amount. Only three are edited; the credit balance is always
derived from them:

    credit = max(0, total - amount_paid - cheque - return)

preview_balances() exposes the derivation without writing so an editor can
recompute on every change. save_balances() persists the split and publishes
pending collection records for non-zero cheque and credit balances.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..extensions import db
from ..models import Order, User
from ..models.orders import ORDER_CANCELLED, BALANCE_TOLERANCE_CENTS
from ..validation import NotFoundError, coerce_cents
from .concurrency import lock_for_update, run_in_transaction
from .ledger_service import append_order_event
from .collection_service import publish_collections


class BalanceError(Exception):
    """Raised for balance operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class BalanceConfirmationRequired(BalanceError):
    """Outstanding balance exceeds the order total and the caller did not confirm."""


@dataclass(frozen=True)
class BalanceInput:
    amount_paid_cents: int = 0
    cheque_balance_cents: int = 0
    return_amount_cents: int = 0

    @classmethod
    def from_payload(cls, data: dict) -> "BalanceInput":
        return cls(
            amount_paid_cents=coerce_cents(data.get("amount_paid_cents"), "amount_paid_cents"),
            cheque_balance_cents=coerce_cents(data.get("cheque_balance_cents"), "cheque_balance_cents"),
            return_amount_cents=coerce_cents(data.get("return_amount_cents"), "return_amount_cents"),
        )


def derive_credit_balance(
    total_cents: int,
    amount_paid_cents: int,
    cheque_balance_cents: int,
    return_amount_cents: int,
) -> int:
    return max(0, total_cents - amount_paid_cents - cheque_balance_cents - return_amount_cents)


def compute_balances(total_cents: int, balances: BalanceInput) -> dict:
    """Derived split for a total, plus the diff hint and whether saving needs confirmation."""
    credit = derive_credit_balance(
        total_cents,
        balances.amount_paid_cents,
        balances.cheque_balance_cents,
        balances.return_amount_cents,
    )
    diff = total_cents - (
        balances.amount_paid_cents + balances.cheque_balance_cents + credit + balances.return_amount_cents
    )
    return {
        "total_cents": total_cents,
        "amount_paid_cents": balances.amount_paid_cents,
        "cheque_balance_cents": balances.cheque_balance_cents,
        "return_amount_cents": balances.return_amount_cents,
        "credit_balance_cents": credit,
        "balance_diff_cents": diff,
        "is_balanced": abs(diff) <= BALANCE_TOLERANCE_CENTS,
        "requires_confirmation": balances.cheque_balance_cents + credit > total_cents,
    }


def preview_balances(order_id: int, balances: BalanceInput) -> dict:
    order = db.session.get(Order, order_id)
    if not order:
        raise NotFoundError(f"Order {order_id} not found")
    return compute_balances(order.total_cents, balances)


def save_balances(order_id: int, actor: User, balances: BalanceInput, *, confirm: bool = False) -> Order:
    """
    Persist the four balance fields and publish collection records.

    Raises:
        NotFoundError: unknown order
        BalanceConfirmationRequired: cheque + credit exceed the total and
            confirm is False (nothing is written)
        BalanceError: cancelled order
    """
    def _op() -> Order:
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if not order:
            raise NotFoundError(f"Order {order_id} not found")
        if order.status == ORDER_CANCELLED:
            raise BalanceError("Cannot edit balances of a cancelled order")

        computed = compute_balances(order.total_cents, balances)
        if computed["requires_confirmation"] and not confirm:
            raise BalanceConfirmationRequired(
                "The outstanding balance is greater than the order total. Confirm to proceed.",
                details=computed,
            )

        order.amount_paid_cents = balances.amount_paid_cents
        order.cheque_balance_cents = balances.cheque_balance_cents
        order.return_amount_cents = balances.return_amount_cents
        order.credit_balance_cents = computed["credit_balance_cents"]

        records = publish_collections(order, actor)

        append_order_event(
            event_type="order.balances_saved",
            entity_type="order",
            entity_id=order.id,
            order_id=order.id,
            actor_user_id=actor.id,
            payload={
                "amount_paid_cents": order.amount_paid_cents,
                "cheque_balance_cents": order.cheque_balance_cents,
                "credit_balance_cents": order.credit_balance_cents,
                "return_amount_cents": order.return_amount_cents,
                "collection_ids": [r.id for r in records],
            },
        )
        return order

    return run_in_transaction(_op)
