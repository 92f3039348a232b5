from __future__ import annotations

import logging
from decimal import Decimal

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import transaction
from django.db.models import DecimalField, ExpressionWrapper, F, Sum
from django.utils import timezone

from .models import Order, OrderItem, WithdrawalRequest
from .notifications import notify

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


class WithdrawalError(ValueError):
    pass


def minimum_withdrawal() -> Decimal:
    return Decimal(str(getattr(settings, "MARKETPLACE_MIN_WITHDRAWAL", "10.00")))


def total_earnings(seller) -> Decimal:
    line_total = ExpressionWrapper(
        F("price_snapshot") * F("qty"), output_field=DecimalField(max_digits=14, decimal_places=2)
    )
    result = OrderItem.objects.filter(
        seller=seller, order__status__in=Order.EARNING_STATUSES
    ).aggregate(total=Sum(line_total))["total"]
    return result or ZERO


def total_withdrawn(seller) -> Decimal:
    """Funds held by withdrawals that were not rejected or cancelled."""
    result = (
        WithdrawalRequest.objects.filter(seller=seller)
        .exclude(status__in=WithdrawalRequest.RELEASED_STATUSES)
        .aggregate(total=Sum("amount"))["total"]
    )
    return result or ZERO


def seller_balance(seller) -> Decimal:
    return total_earnings(seller) - total_withdrawn(seller)


@transaction.atomic
def request_withdrawal(seller, amount) -> WithdrawalRequest:
    amount = Decimal(str(amount))
    minimum = minimum_withdrawal()
    if amount < minimum:
        raise WithdrawalError(f"The minimum withdrawal amount is {minimum}.")
    # Serialize concurrent requests from the same seller, first request included.
    get_user_model().objects.select_for_update().filter(pk=seller.pk).first()
    balance = seller_balance(seller)
    if amount > balance:
        raise WithdrawalError(f"Insufficient balance ({balance} available).")

    withdrawal = WithdrawalRequest.objects.create(seller=seller, amount=amount)
    logger.info("Withdrawal #%s requested by %s: %s", withdrawal.pk, seller.pk, amount)
    return withdrawal


def cancel_withdrawal(withdrawal: WithdrawalRequest) -> WithdrawalRequest:
    if withdrawal.status != WithdrawalRequest.STATUS_PENDING:
        raise WithdrawalError("Only pending withdrawals can be cancelled.")
    withdrawal.status = WithdrawalRequest.STATUS_CANCELLED
    withdrawal.save(update_fields=["status"])
    return withdrawal


# ---- Operator transitions (admin back-office) -----------------------------------

def _set_status(withdrawal: WithdrawalRequest, status: str, allowed_from, **fields) -> WithdrawalRequest:
    if withdrawal.status not in allowed_from:
        raise WithdrawalError(f"Cannot move a {withdrawal.status} withdrawal to {status}.")
    withdrawal.status = status
    withdrawal.processed_at = timezone.now()
    for name, value in fields.items():
        setattr(withdrawal, name, value)
    withdrawal.save()
    notify(
        withdrawal.seller_id,
        title="Withdrawal update",
        body=f"Your withdrawal of {withdrawal.amount} is now {withdrawal.get_status_display().lower()}.",
        data={"type": "withdrawal", "withdrawal_id": withdrawal.pk, "status": status},
    )
    return withdrawal


def approve_withdrawal(withdrawal: WithdrawalRequest) -> WithdrawalRequest:
    return _set_status(withdrawal, WithdrawalRequest.STATUS_APPROVED, (WithdrawalRequest.STATUS_PENDING,))


def reject_withdrawal(withdrawal: WithdrawalRequest, reason: str = "") -> WithdrawalRequest:
    return _set_status(
        withdrawal,
        WithdrawalRequest.STATUS_REJECTED,
        (WithdrawalRequest.STATUS_PENDING, WithdrawalRequest.STATUS_APPROVED),
        rejection_reason=reason,
    )


def complete_withdrawal(withdrawal: WithdrawalRequest, reference: str = "") -> WithdrawalRequest:
    return _set_status(
        withdrawal,
        WithdrawalRequest.STATUS_COMPLETED,
        (WithdrawalRequest.STATUS_APPROVED, WithdrawalRequest.STATUS_PROCESSING),
        transaction_reference=reference,
    )
