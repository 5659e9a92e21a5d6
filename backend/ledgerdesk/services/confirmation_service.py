# Overview: Applies matching decisions and payment confirmations; refreshes sale balances.

"""
Confirmation Coordinator

WHY: A matching decision only becomes money once it is applied. This module
is the one place a payment turns confirmed, a transfer turns consumed, and a
sale's cached balance gets rewritten.

STATE MACHINE (per payment):
    pending(no_match) -> pending(matched_suggested) -> confirmed(suggested|auto)
Confirmed is terminal here.

CONCURRENCY:
- payment pending -> confirmed and transfer unconsumed -> consumed are guarded
  updates (compare-and-set) inside one unit of work
- a lost race rolls the unit back, re-reads, retries once, then raises
  ConcurrentMatchConflict
- a candidate whose payment/transfer vanished is skipped, not raised
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ..enums import ConfirmationType, MatchResult, PaymentStatus, SaleStatus
from ..errors import (
    InvalidPaymentState,
    PaymentNotFound,
    SaleNotFound,
    StoreConflict,
    TransferNotFound,
    ValidationError,
)
from ..models import IncomingTransfer, Payment, PaymentConfirmation, Sale
from ..time_utils import utcnow
from . import cash_period_service, ledger_service
from .concurrency import run_compare_and_set
from .ledger_service import Balance
from .matching_service import MatchCandidate
from .record_store import RecordStore, default_store

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    transfer_id: int
    payment_id: int | None = None
    match_result: MatchResult = MatchResult.NO_MATCH
    confidence: float = 0.0
    applied: bool = False
    skipped_reason: str | None = None
    balance: Balance | None = None
    candidates: list[MatchCandidate] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "transfer_id": self.transfer_id,
            "payment_id": self.payment_id,
            "match_result": self.match_result.value,
            "confidence": self.confidence,
            "applied": self.applied,
            "skipped_reason": self.skipped_reason,
            "balance": self.balance.to_dict() if self.balance else None,
            "candidates": [c.to_dict() for c in self.candidates],
        }


@dataclass
class ConfirmResult:
    payment: Payment
    confirmation: PaymentConfirmation
    balance: Balance | None

    def to_dict(self) -> dict:
        return {
            "payment": self.payment.to_dict(),
            "confirmation": self.confirmation.to_dict(),
            "balance": self.balance.to_dict() if self.balance else None,
        }


# =============================================================================
# SALE BALANCE
# =============================================================================

def refresh_sale_cache(sale_id: int, *, store: RecordStore | None = None) -> Balance:
    """
    Recompute a sale's balance from confirmed payments and write the caches.

    STATUS RULES:
    - balance <= 0 -> paid (payment_completed_at stamped once)
    - was paid but balance > 0 again -> back to confirmed
    - cancelled sales keep their status

    Does not commit.
    """
    store = store or default_store()
    sale = store.get_one(Sale, SaleNotFound, id=sale_id)
    balance = ledger_service.compute_sale_balance(sale.id, store=store)

    sale.paid_amount = balance.paid
    sale.balance_amount = balance.balance
    if sale.status != SaleStatus.CANCELLED:
        if balance.is_paid:
            sale.status = SaleStatus.PAID
            if sale.payment_completed_at is None:
                sale.payment_completed_at = utcnow()
        else:
            if sale.status == SaleStatus.PAID:
                sale.status = SaleStatus.CONFIRMED
            sale.payment_completed_at = None
    store.session.flush()
    return balance


# =============================================================================
# INTERNAL HELPERS
# =============================================================================

def _release_suggestions(store: RecordStore, transfer_id: int, keep_payment_id: int) -> None:
    """Unlink other pending payments that were only suggested for this transfer."""
    for other in store.find_many(Payment, {"matched_transfer_id": transfer_id, "status": PaymentStatus.PENDING}):
        if other.id == keep_payment_id:
            continue
        store.update_where(
            Payment,
            {"id": other.id, "status": PaymentStatus.PENDING, "matched_transfer_id": transfer_id},
            {"matched_transfer_id": None, "match_result": MatchResult.NO_MATCH, "match_confidence": 0.0},
        )


def _apply_confirmation(
    store: RecordStore,
    *,
    payment: Payment,
    transfer: IncomingTransfer | None,
    confirmation_type: ConfirmationType,
    confidence: float,
    match_result: MatchResult,
    user_id: int | None,
    reason: str,
) -> ConfirmResult:
    """
    Steps (a)-(d) of a confirmation in the current unit of work:
    (a) payment pending -> confirmed, (b) match fields, (c) transfer consumed,
    (d) sale cache refreshed. Plus the audit row and the cash box movement.

    Raises StoreConflict if the payment or transfer changed under us, including
    a rival payment linking the transfer first (unique matched_transfer_id).
    """
    now = utcnow()
    patch = {
        "status": PaymentStatus.CONFIRMED,
        "confirmed_at": now,
        "confirmed_by_user_id": user_id,
        "match_confidence": confidence,
        "match_result": match_result,
    }
    if transfer is not None:
        _release_suggestions(store, transfer.id, payment.id)
        patch["matched_transfer_id"] = transfer.id
        # consumed flag before the payment link
        store.update_where(
            IncomingTransfer,
            {"id": transfer.id, "consumed": False},
            {"consumed": True, "consumed_by_payment_id": payment.id, "consumed_at": now},
        )

    store.update_where(Payment, {"id": payment.id, "status": PaymentStatus.PENDING}, patch)

    confirmation = store.insert(PaymentConfirmation(
        tenant_id=payment.tenant_id,
        payment_id=payment.id,
        transfer_id=transfer.id if transfer is not None else None,
        confirmation_type=confirmation_type,
        confidence_score=confidence,
        confirmed_by_user_id=user_id,
        reason=reason[:512],
    ))

    balance = refresh_sale_cache(payment.sale_id, store=store) if payment.sale_id else None
    cash_period_service.record_payment_movement(payment, user_id=user_id, store=store)
    return ConfirmResult(payment=payment, confirmation=confirmation, balance=balance)


# =============================================================================
# RECONCILE (matching engine output)
# =============================================================================

def reconcile(
    transfer_id: int,
    candidates: list[MatchCandidate],
    *,
    store: RecordStore | None = None,
) -> ReconcileResult:
    """
    Apply the winning candidate (the first one, in engine order).

    - matched_auto: confirm payment, consume transfer, refresh sale balance
    - matched_suggested: link payment to transfer with its confidence only;
      the payment stays pending until a user confirms it
    - no_match / no candidates: nothing is written

    Raises:
        ConcurrentMatchConflict: guarded update lost twice
    """
    store = store or default_store()
    result = ReconcileResult(transfer_id=transfer_id, candidates=list(candidates))
    if not candidates:
        return result

    winner = candidates[0]
    if winner.transfer_id != transfer_id:
        raise ValidationError("Winning candidate does not belong to this transfer")
    result.payment_id = winner.payment_id
    result.match_result = winner.match_result
    result.confidence = winner.confidence

    if winner.match_result == MatchResult.NO_MATCH:
        return result

    def _op():
        transfer = store.get_one(IncomingTransfer, TransferNotFound, id=transfer_id)
        payment = store.get_one(Payment, PaymentNotFound, id=winner.payment_id, tenant_id=transfer.tenant_id)
        if transfer.consumed or payment.status != PaymentStatus.PENDING:
            raise StoreConflict("payments", {"id": payment.id, "transfer_id": transfer.id})

        if winner.match_result == MatchResult.MATCHED_AUTO:
            confirmed = _apply_confirmation(
                store,
                payment=payment,
                transfer=transfer,
                confirmation_type=ConfirmationType.AUTO,
                confidence=winner.confidence,
                match_result=MatchResult.MATCHED_AUTO,
                user_id=None,
                reason=f"Auto-confirmed with confidence {winner.confidence:.2f}: {', '.join(winner.reasons)}",
            )
            store.commit()
            logger.info("Payment %s auto-confirmed against transfer %s", payment.id, transfer.id)
            return True, confirmed.balance, None

        holder = store.find_one(Payment, matched_transfer_id=transfer.id)
        if holder is not None and holder.id != payment.id:
            return False, None, f"transfer already suggested to payment {holder.id}"
        store.update_where(
            Payment,
            {"id": payment.id, "status": PaymentStatus.PENDING, "matched_transfer_id": None},
            {
                "match_confidence": winner.confidence,
                "match_result": MatchResult.MATCHED_SUGGESTED,
                "matched_transfer_id": transfer.id,
            },
        )
        store.commit()
        logger.info("Payment %s suggested for transfer %s (%.2f)", payment.id, transfer.id, winner.confidence)
        return True, None, None

    try:
        applied, balance, skipped = run_compare_and_set(_op, description=f"transfer {transfer_id}")
    except (PaymentNotFound, TransferNotFound) as exc:
        store.rollback()
        logger.warning("Stale candidate for transfer %s skipped: %s", transfer_id, exc)
        result.skipped_reason = str(exc)
        return result

    result.applied = applied
    result.balance = balance
    result.skipped_reason = skipped
    return result


# =============================================================================
# USER CONFIRMATION
# =============================================================================

def confirm_payment(
    payment_id: int,
    *,
    tenant_id: int,
    user_id: int | None = None,
    transfer_id: int | None = None,
    store: RecordStore | None = None,
) -> ConfirmResult:
    """
    Confirm a pending payment on a user's behalf.

    With a transfer (explicit, or the one suggested by matching) this is an
    assisted confirmation and consumes the transfer; without one it is a
    manual confirmation.

    Raises:
        ValidationError: tenant missing
        PaymentNotFound / TransferNotFound
        InvalidPaymentState: payment already confirmed, or linked elsewhere
        ConcurrentMatchConflict: lost a race with another confirmation
    """
    if tenant_id is None:
        raise ValidationError("tenant_id is required")
    store = store or default_store()

    payment = store.get_one(Payment, PaymentNotFound, id=payment_id, tenant_id=tenant_id)
    if payment.status != PaymentStatus.PENDING:
        raise InvalidPaymentState(f"Payment {payment.id} is already {payment.status.value}")
    if transfer_id is not None and payment.matched_transfer_id not in (None, transfer_id):
        raise InvalidPaymentState(
            f"Payment {payment.id} is linked to transfer {payment.matched_transfer_id}, not {transfer_id}"
        )
    target_transfer_id = transfer_id if transfer_id is not None else payment.matched_transfer_id

    def _op():
        fresh = store.get_one(Payment, PaymentNotFound, id=payment_id, tenant_id=tenant_id)
        if fresh.status != PaymentStatus.PENDING:
            raise StoreConflict("payments", {"id": fresh.id, "status": PaymentStatus.PENDING})
        transfer = None
        if target_transfer_id is not None:
            transfer = store.get_one(IncomingTransfer, TransferNotFound, id=target_transfer_id, tenant_id=tenant_id)
            if transfer.consumed:
                raise StoreConflict("incoming_transfers", {"id": transfer.id, "consumed": False})

        confidence = float(fresh.match_confidence or 0.0)
        if transfer is not None:
            kind = ConfirmationType.ASSISTED
            reason = f"Confirmed by user after suggestion (confidence {confidence:.2f})"
            match_result = MatchResult.MATCHED_SUGGESTED
        else:
            kind = ConfirmationType.MANUAL
            reason = "Confirmed manually"
            match_result = fresh.match_result

        confirmed = _apply_confirmation(
            store,
            payment=fresh,
            transfer=transfer,
            confirmation_type=kind,
            confidence=confidence,
            match_result=match_result,
            user_id=user_id,
            reason=reason,
        )
        store.commit()
        return confirmed

    result = run_compare_and_set(_op, description=f"payment {payment_id}")
    logger.info("Payment %s confirmed (%s) by user %s", payment_id, result.confirmation.confirmation_type.value, user_id)
    return result
