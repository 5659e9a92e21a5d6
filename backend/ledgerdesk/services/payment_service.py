# Overview: Service-layer operations for payment creation and lookup; idempotent by derived key.

"""
Payment Service

WHY: Clients retry. A payment creation request that is sent twice (network
timeout, double click, webhook redelivery) must resolve to the same payment
row and never produce a second financial effect.

DESIGN PRINCIPLES:
- Idempotency key derived from sale|amount|method|payment_method_id|external_reference
- Lookup-before-insert, backed by a unique (tenant_id, idempotency_key) constraint
- Manual tenders (cash, in-hand transfer) are confirmed on creation;
  gateway/external payments start pending and wait for a matching transfer
- A new pending payment is scored against unconsumed transfers straight away
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError

from ..enums import ConfirmationType, MatchResult, PaymentCategory, PaymentStatus, SaleStatus, parse_enum
from ..errors import PaymentNotFound, SaleNotFound, ValidationError
from ..models import IncomingTransfer, Payment, PaymentConfirmation, Sale
from ..money import positive_money
from ..time_utils import utcnow
from . import cash_period_service, confirmation_service, matching_service
from .confirmation_service import ReconcileResult
from .idempotency import derive_key
from .ledger_service import Balance
from .record_store import RecordStore, default_store

logger = logging.getLogger(__name__)


@dataclass
class CreatePaymentResult:
    payment: Payment
    created: bool
    balance: Balance | None = None
    reconcile: ReconcileResult | None = None

    def to_dict(self) -> dict:
        return {
            "payment": self.payment.to_dict(),
            "created": self.created,
            "balance": self.balance.to_dict() if self.balance else None,
            "reconcile": self.reconcile.to_dict() if self.reconcile else None,
        }


def initial_status(category: PaymentCategory) -> PaymentStatus:
    """manual -> confirmed; gateway/external -> pending."""
    if category == PaymentCategory.MANUAL:
        return PaymentStatus.CONFIRMED
    return PaymentStatus.PENDING


def _clean(value, field: str, max_len: int = 128) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if len(text) > max_len:
        raise ValidationError(f"{field} must be at most {max_len} characters")
    return text


# =============================================================================
# PAYMENT CREATION
# =============================================================================

def create_payment(
    tenant_id: int,
    sale_id: int | None,
    amount,
    method: str,
    *,
    payment_method_id: str | None = None,
    external_reference: str | None = None,
    reference: str | None = None,
    payment_category=PaymentCategory.GATEWAY,
    user_id: int | None = None,
    auto_match: bool = True,
    store: RecordStore | None = None,
) -> CreatePaymentResult:
    """
    Create a payment, or return the existing one for the same logical attempt.

    Args:
        tenant_id: Owning tenant (required; no default tenant fallback)
        sale_id: Sale being paid (optional for unattached deposits)
        amount: Positive amount, 2 decimals
        method: cash, transfer, qr, card, mercadopago, ...
        payment_method_id: Configured payment method row, if any
        external_reference: Gateway/bank reference supplied by the client
        reference: Reference shown to the payer (e.g. "SALE-9A8619DC")
        payment_category: manual, gateway or external
        auto_match: score a new pending payment against unconsumed transfers

    Raises:
        ValidationError, SaleNotFound
    """
    if tenant_id is None:
        raise ValidationError("tenant_id is required")
    store = store or default_store()

    value = positive_money(amount)
    method = _clean(method, "method", 32)
    if not method:
        raise ValidationError("method is required")
    method = method.lower()
    category = parse_enum(PaymentCategory, payment_category, "payment_category")
    payment_method_id = _clean(payment_method_id, "payment_method_id", 64)
    external_reference = _clean(external_reference, "external_reference")
    reference = _clean(reference, "reference")

    if sale_id is not None:
        sale = store.get_one(Sale, SaleNotFound, id=sale_id, tenant_id=tenant_id)
        if sale.status == SaleStatus.CANCELLED:
            raise ValidationError("Cannot add payment to a cancelled sale")

    key = derive_key(sale_id, value, method, payment_method_id, external_reference)
    existing = store.find_one(Payment, tenant_id=tenant_id, idempotency_key=key)
    if existing:
        logger.info("Idempotent replay of payment %s (tenant %s)", existing.id, tenant_id)
        return CreatePaymentResult(payment=existing, created=False)

    status = initial_status(category)
    now = utcnow()
    payment = Payment(
        tenant_id=tenant_id,
        sale_id=sale_id,
        amount=value,
        method=method,
        payment_method_id=payment_method_id,
        payment_category=category,
        status=status,
        match_confidence=0.0,
        match_result=MatchResult.NO_MATCH,
        reference=reference,
        external_reference=external_reference,
        idempotency_key=key,
        created_by_user_id=user_id,
        created_at=now,
    )
    if status == PaymentStatus.CONFIRMED:
        payment.confirmed_at = now
        payment.confirmed_by_user_id = user_id

    try:
        store.insert(payment)
    except IntegrityError:
        # a concurrent request with the same key won the insert
        store.rollback()
        winner = store.find_one(Payment, tenant_id=tenant_id, idempotency_key=key)
        if winner is None:
            raise
        return CreatePaymentResult(payment=winner, created=False)

    balance = None
    if status == PaymentStatus.CONFIRMED:
        store.insert(PaymentConfirmation(
            tenant_id=tenant_id,
            payment_id=payment.id,
            confirmation_type=ConfirmationType.MANUAL,
            confidence_score=0.0,
            confirmed_by_user_id=user_id,
            reason=f"Manual {method} payment confirmed on creation",
        ))
        if sale_id is not None:
            balance = confirmation_service.refresh_sale_cache(sale_id, store=store)
        cash_period_service.record_payment_movement(payment, user_id=user_id, store=store)
    store.commit()
    logger.info("Created payment %s (%s, %s) for sale %s", payment.id, method, status.value, sale_id)

    result = CreatePaymentResult(payment=payment, created=True, balance=balance)
    if status == PaymentStatus.PENDING and auto_match:
        candidates = matching_service.match_payment(tenant_id, payment.id, store=store)
        if candidates:
            result.reconcile = confirmation_service.reconcile(candidates[0].transfer_id, candidates, store=store)
            if result.reconcile.balance is not None:
                result.balance = result.reconcile.balance
            store.refresh(payment)
    return result


# =============================================================================
# QUERIES
# =============================================================================

def get_payment(payment_id: int, *, tenant_id: int, store: RecordStore | None = None) -> Payment:
    if tenant_id is None:
        raise ValidationError("tenant_id is required")
    store = store or default_store()
    return store.get_one(Payment, PaymentNotFound, id=payment_id, tenant_id=tenant_id)


def get_sale_payments(sale_id: int, *, tenant_id: int, store: RecordStore | None = None) -> list[Payment]:
    """All payments for a sale, ordered by creation time."""
    store = store or default_store()
    store.get_one(Sale, SaleNotFound, id=sale_id, tenant_id=tenant_id)
    return store.find_many(Payment, {"sale_id": sale_id}, order_by=(Payment.created_at, Payment.id))


def get_payment_matching_status(payment_id: int, *, tenant_id: int, store: RecordStore | None = None) -> dict:
    """
    Matching state of a payment for the UI: confidence, result, linked
    transfer and confirmation history.
    """
    store = store or default_store()
    payment = get_payment(payment_id, tenant_id=tenant_id, store=store)
    transfer = None
    if payment.matched_transfer_id is not None:
        transfer = store.find_one(IncomingTransfer, id=payment.matched_transfer_id)
    confirmations = store.find_many(
        PaymentConfirmation,
        {"payment_id": payment.id},
        order_by=(PaymentConfirmation.created_at, PaymentConfirmation.id),
    )
    return {
        "payment_id": payment.id,
        "status": payment.status.value,
        "match_result": payment.match_result.value,
        "match_confidence": round(payment.match_confidence or 0.0, 2),
        "matched_transfer": transfer.to_dict() if transfer else None,
        "awaiting_confirmation": (
            payment.status == PaymentStatus.PENDING
            and payment.match_result == MatchResult.MATCHED_SUGGESTED
        ),
        "confirmations": [c.to_dict() for c in confirmations],
    }
