# Overview: Matching engine; scores pending payments against incoming transfers.

"""
Transfer Matching Engine

WHY: Bank transfers arrive without a hard link to the payment they settle.
The engine scores every plausible pairing so obvious matches confirm
themselves and doubtful ones are put in front of a human.

SIGNALS (each adds to a 0.0-1.0 confidence):
- Amount: exact match (strong) or within tolerance (partial, fading to 0)
- Reference: exact reference match (strong) or reference found in the
  transfer's reference/description (partial)
- Time: payment created shortly before the transfer arrived (decays over the
  window; created after the transfer counts for nothing)
- Uniqueness: a lone candidate above the suggest floor gets a bonus; a
  cluster of close scores is penalised and can never auto-confirm

CLASSIFICATION:
- matched_auto: >= auto threshold AND the single unambiguous top candidate
- matched_suggested: >= suggest floor
- no_match: everything else

The engine is read-only. Every scored candidate is returned in rank order;
the confirmation service acts on the first one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Mapping

from flask import current_app, has_app_context

from ..enums import MatchResult, PaymentStatus
from ..errors import PaymentNotFound, TransferNotFound, ValidationError
from ..models import IncomingTransfer, Payment
from ..money import CENT, to_money
from ..time_utils import hours_between
from .record_store import RecordStore, default_store

logger = logging.getLogger(__name__)

_NEVER = float("inf")


@dataclass(frozen=True)
class MatchPolicy:
    """Thresholds and signal weights. Loaded from app config, never hard-wired in callers."""
    auto_threshold: float = 0.9
    suggest_floor: float = 0.5
    amount_tolerance: Decimal = Decimal("0.05")
    window_hours: float = 24.0
    ambiguity_delta: float = 0.05
    weight_exact_amount: float = 0.55
    weight_tolerant_amount: float = 0.3
    weight_reference_exact: float = 0.4
    weight_reference_partial: float = 0.25
    weight_temporal: float = 0.2
    uniqueness_bonus: float = 0.1
    ambiguity_penalty: float = 0.05

    @classmethod
    def from_config(cls, config: Mapping) -> "MatchPolicy":
        defaults = cls()

        def pick(key: str, default):
            value = config.get(key)
            return default if value is None else value

        return cls(
            auto_threshold=float(pick("MATCH_AUTO_THRESHOLD", defaults.auto_threshold)),
            suggest_floor=float(pick("MATCH_SUGGEST_FLOOR", defaults.suggest_floor)),
            amount_tolerance=to_money(pick("MATCH_AMOUNT_TOLERANCE", defaults.amount_tolerance)),
            window_hours=float(pick("MATCH_WINDOW_HOURS", defaults.window_hours)),
            ambiguity_delta=float(pick("MATCH_AMBIGUITY_DELTA", defaults.ambiguity_delta)),
            weight_exact_amount=float(pick("MATCH_WEIGHT_EXACT_AMOUNT", defaults.weight_exact_amount)),
            weight_tolerant_amount=float(pick("MATCH_WEIGHT_TOLERANT_AMOUNT", defaults.weight_tolerant_amount)),
            weight_reference_exact=float(pick("MATCH_WEIGHT_REFERENCE_EXACT", defaults.weight_reference_exact)),
            weight_reference_partial=float(pick("MATCH_WEIGHT_REFERENCE_PARTIAL", defaults.weight_reference_partial)),
            weight_temporal=float(pick("MATCH_WEIGHT_TEMPORAL", defaults.weight_temporal)),
            uniqueness_bonus=float(pick("MATCH_UNIQUENESS_BONUS", defaults.uniqueness_bonus)),
            ambiguity_penalty=float(pick("MATCH_AMBIGUITY_PENALTY", defaults.ambiguity_penalty)),
        )


def current_policy() -> MatchPolicy:
    if has_app_context():
        return MatchPolicy.from_config(current_app.config)
    return MatchPolicy()


@dataclass(frozen=True)
class MatchCandidate:
    payment_id: int
    transfer_id: int
    confidence: float
    match_result: MatchResult
    reasons: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "payment_id": self.payment_id,
            "transfer_id": self.transfer_id,
            "confidence": self.confidence,
            "match_result": self.match_result.value,
            "reasons": list(self.reasons),
        }


@dataclass
class _Scored:
    payment: object
    transfer: object
    confidence: float
    reasons: list[str]
    distance_hours: float
    order_at: datetime | None

    def sort_key(self):
        return (-self.confidence, self.distance_hours, self.order_at or datetime.max, self.order_id())

    def order_id(self) -> int:
        return (self.payment.id or 0) * 1_000_003 + (self.transfer.id or 0)


# =============================================================================
# SCORING (pure)
# =============================================================================

def within_tolerance(payment_amount, transfer_amount, policy: MatchPolicy) -> bool:
    return abs(to_money(payment_amount) - to_money(transfer_amount)) <= policy.amount_tolerance


def _references(payment) -> list[str]:
    refs = []
    for value in (getattr(payment, "reference", None), getattr(payment, "external_reference", None)):
        if value and value.strip():
            refs.append(value.strip().lower())
    return refs


def score_pair(transfer, payment, policy: MatchPolicy) -> tuple[float, list[str], float]:
    """
    Score one payment/transfer pairing on the independent signals.

    Returns (raw confidence, reasons, temporal distance in hours). The
    distance is +inf when the payment was created after the transfer.
    """
    confidence = 0.0
    reasons: list[str] = []

    diff = abs(to_money(payment.amount) - to_money(transfer.amount))
    if diff < CENT:
        confidence += policy.weight_exact_amount
        reasons.append("exact amount")
    elif diff <= policy.amount_tolerance and policy.amount_tolerance > 0:
        fade = 1.0 - float(diff / policy.amount_tolerance)
        confidence += policy.weight_tolerant_amount * fade
        reasons.append(f"amount within tolerance (diff {diff})")

    transfer_ref = (transfer.reference or "").strip().lower()
    haystack = f"{transfer_ref} {(transfer.raw_description or '').lower()}"
    refs = _references(payment)
    if transfer_ref and transfer_ref in refs:
        confidence += policy.weight_reference_exact
        reasons.append("reference match")
    elif any(ref in haystack for ref in refs):
        confidence += policy.weight_reference_partial
        reasons.append("reference in description")

    distance = _NEVER
    if payment.created_at is not None and transfer.received_at is not None:
        delta = hours_between(payment.created_at, transfer.received_at)
        if delta < 0:
            reasons.append("created after transfer")
        elif delta <= policy.window_hours:
            distance = delta
            confidence += policy.weight_temporal * (1.0 - delta / policy.window_hours)
            reasons.append(f"created {delta:.1f}h before transfer")
        else:
            distance = delta
            reasons.append("outside time window")

    return confidence, reasons, distance


def rank_candidates(scored: list[_Scored], policy: MatchPolicy) -> list[MatchCandidate]:
    """
    Apply the uniqueness/ambiguity pass, classify, and order the candidates.

    Order: confidence desc, temporal distance asc, earliest created, id.
    """
    if not scored:
        return []

    above_floor = [s for s in scored if s.confidence >= policy.suggest_floor]
    if len(above_floor) == 1:
        above_floor[0].confidence += policy.uniqueness_bonus
        above_floor[0].reasons.append("unique candidate")

    for s in scored:
        s.confidence = round(max(0.0, min(1.0, s.confidence)), 2)
    scored.sort(key=_Scored.sort_key)

    top = scored[0]
    cluster = [
        s for s in scored
        if s.confidence >= policy.suggest_floor
        and top.confidence - s.confidence <= policy.ambiguity_delta + 1e-9
    ]
    ambiguous = len(cluster) >= 2
    if ambiguous:
        for s in cluster:
            s.confidence = round(max(0.0, s.confidence - policy.ambiguity_penalty), 2)
            s.reasons.append(f"ambiguous: {len(cluster)} close candidates")
        scored.sort(key=_Scored.sort_key)

    results = []
    for index, s in enumerate(scored):
        if index == 0 and not ambiguous and s.confidence >= policy.auto_threshold:
            result = MatchResult.MATCHED_AUTO
        elif s.confidence >= policy.suggest_floor:
            result = MatchResult.MATCHED_SUGGESTED
        else:
            result = MatchResult.NO_MATCH
        results.append(MatchCandidate(
            payment_id=s.payment.id,
            transfer_id=s.transfer.id,
            confidence=s.confidence,
            match_result=result,
            reasons=list(s.reasons),
        ))
    return results


def score_transfer(transfer, payments: Iterable, policy: MatchPolicy) -> list[MatchCandidate]:
    """Score one transfer against candidate payments (no I/O)."""
    scored = []
    for payment in payments:
        if not within_tolerance(payment.amount, transfer.amount, policy):
            continue
        confidence, reasons, distance = score_pair(transfer, payment, policy)
        scored.append(_Scored(payment, transfer, confidence, reasons, distance, payment.created_at))
    return rank_candidates(scored, policy)


def score_payment(payment, transfers: Iterable, policy: MatchPolicy) -> list[MatchCandidate]:
    """Score one payment against candidate transfers (no I/O)."""
    scored = []
    for transfer in transfers:
        if not within_tolerance(payment.amount, transfer.amount, policy):
            continue
        confidence, reasons, distance = score_pair(transfer, payment, policy)
        scored.append(_Scored(payment, transfer, confidence, reasons, distance, transfer.received_at))
    return rank_candidates(scored, policy)


# =============================================================================
# STORE-BACKED MATCHING
# =============================================================================

def match_transfer(
    tenant_id: int,
    transfer_id: int,
    *,
    store: RecordStore | None = None,
    policy: MatchPolicy | None = None,
) -> list[MatchCandidate]:
    """
    Score all pending, unlinked payments of the tenant against one transfer.

    Consumed transfers yield no candidates.
    """
    if tenant_id is None:
        raise ValidationError("tenant_id is required")
    store = store or default_store()
    policy = policy or current_policy()

    transfer = store.get_one(IncomingTransfer, TransferNotFound, id=transfer_id, tenant_id=tenant_id)
    if transfer.consumed:
        logger.info("Transfer %s already consumed; skipping matching", transfer.id)
        return []

    payments = store.find_many(
        Payment,
        {"tenant_id": tenant_id, "status": PaymentStatus.PENDING, "matched_transfer_id": None},
        order_by=(Payment.created_at, Payment.id),
    )
    candidates = score_transfer(transfer, payments, policy)

    if candidates:
        best = candidates[0]
        logger.info(
            "Transfer %s: %d candidate(s), best payment %s confidence %.2f (%s)",
            transfer.id, len(candidates), best.payment_id, best.confidence, best.match_result.value,
        )
    else:
        logger.info("Transfer %s: no pending payment within tolerance", transfer.id)
    return candidates


def match_payment(
    tenant_id: int,
    payment_id: int,
    *,
    store: RecordStore | None = None,
    policy: MatchPolicy | None = None,
) -> list[MatchCandidate]:
    """
    Reverse direction: score unconsumed, unclaimed transfers against one
    newly created pending payment.
    """
    if tenant_id is None:
        raise ValidationError("tenant_id is required")
    store = store or default_store()
    policy = policy or current_policy()

    payment = store.get_one(Payment, PaymentNotFound, id=payment_id, tenant_id=tenant_id)
    if payment.status != PaymentStatus.PENDING or payment.matched_transfer_id is not None:
        return []

    claimed = {
        p.matched_transfer_id
        for p in store.find_many(
            Payment,
            {"tenant_id": tenant_id},
            criteria=(Payment.matched_transfer_id.isnot(None),),
        )
    }
    transfers = [
        t for t in store.find_many(
            IncomingTransfer,
            {"tenant_id": tenant_id, "consumed": False},
            order_by=(IncomingTransfer.received_at, IncomingTransfer.id),
        )
        if t.id not in claimed
    ]
    return score_payment(payment, transfers, policy)
