# Overview: Service-layer operations for incoming transfers; import, manual entry, listing.

"""
Incoming Transfer Service

WHY: Transfers reach the system in batches (bank statement exports, API
pushes) or one at a time (a cashier typing in a receipt). Either way each
transfer is stored first and then handed to the matching engine.

DESIGN PRINCIPLES:
- A batch is validated as a whole before anything is written
- Transfers are inserted in arrival order and matched in that same order,
  so an earlier transfer gets first pick of the pending payments
- One transfer failing to reconcile never aborts the rest of the batch
"""

from __future__ import annotations

import csv
import io
import logging

from ..enums import MatchResult, TransferSource, parse_enum
from ..errors import ConcurrentMatchConflict, NotFoundError, ValidationError
from ..models import IncomingTransfer
from ..money import positive_money
from ..time_utils import parse_iso_datetime, utcnow
from . import confirmation_service, matching_service
from .confirmation_service import ReconcileResult
from .matching_service import MatchPolicy
from .record_store import RecordStore, default_store

logger = logging.getLogger(__name__)

CSV_COLUMNS = ("amount", "reference", "origin_label", "raw_description", "received_at")

MAX_BATCH = 1000


def _clean(value, max_len: int) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text[:max_len] if text else None


def _build_transfer(tenant_id: int, row: dict, source: TransferSource, index: int) -> IncomingTransfer:
    if not isinstance(row, dict):
        raise ValidationError(f"Row {index}: expected an object")
    prefix = f"Row {index}"
    amount = positive_money(row.get("amount"), f"{prefix}: amount")
    received_at = parse_iso_datetime(row.get("received_at"), f"{prefix}: received_at")
    return IncomingTransfer(
        tenant_id=tenant_id,
        amount=amount,
        reference=_clean(row.get("reference"), 128),
        origin_label=_clean(row.get("origin_label"), 255),
        raw_description=str(row.get("raw_description") or "").strip(),
        received_at=received_at or utcnow(),
        source=source,
        consumed=False,
    )


# =============================================================================
# IMPORT
# =============================================================================

def reconcile_transfer(
    tenant_id: int,
    transfer_id: int,
    *,
    store: RecordStore | None = None,
    policy: MatchPolicy | None = None,
) -> ReconcileResult:
    """
    Match one stored transfer and apply the outcome.

    Stale candidates and lost races are reported on the result, not raised.
    """
    store = store or default_store()
    try:
        candidates = matching_service.match_transfer(tenant_id, transfer_id, store=store, policy=policy)
        return confirmation_service.reconcile(transfer_id, candidates, store=store)
    except (NotFoundError, ConcurrentMatchConflict) as exc:
        store.rollback()
        logger.warning("Transfer %s not reconciled: %s", transfer_id, exc)
        return ReconcileResult(transfer_id=transfer_id, skipped_reason=str(exc))


def import_transfers(
    tenant_id: int,
    rows: list[dict],
    *,
    source=TransferSource.API,
    store: RecordStore | None = None,
    policy: MatchPolicy | None = None,
) -> list[ReconcileResult]:
    """
    Store a batch of transfers, then match and reconcile each one.

    Args:
        tenant_id: Owning tenant (required)
        rows: dicts with amount, reference, origin_label, raw_description,
              received_at (ISO-8601; defaults to now)
        source: api, csv or manual

    Returns:
        One ReconcileResult per row, in input order.

    Raises:
        ValidationError: missing tenant, empty/oversized batch, or any bad row
        (nothing is written in that case)
    """
    if tenant_id is None:
        raise ValidationError("tenant_id is required")
    source = parse_enum(TransferSource, source, "source")
    if not rows:
        raise ValidationError("No transfers to import")
    if len(rows) > MAX_BATCH:
        raise ValidationError(f"At most {MAX_BATCH} transfers per import")
    store = store or default_store()

    transfers = [_build_transfer(tenant_id, row, source, i + 1) for i, row in enumerate(rows)]
    for transfer in transfers:
        store.insert(transfer)
    store.commit()
    logger.info("Imported %d transfer(s) for tenant %s (source %s)", len(transfers), tenant_id, source.value)

    results = [reconcile_transfer(tenant_id, t.id, store=store, policy=policy) for t in transfers]

    auto = sum(1 for r in results if r.applied and r.match_result == MatchResult.MATCHED_AUTO)
    suggested = sum(1 for r in results if r.applied and r.match_result == MatchResult.MATCHED_SUGGESTED)
    logger.info("Import for tenant %s: %d auto-confirmed, %d suggested", tenant_id, auto, suggested)
    return results


def create_manual_transfer(
    tenant_id: int,
    amount,
    *,
    reference: str | None = None,
    origin_label: str | None = None,
    raw_description: str | None = None,
    received_at=None,
    store: RecordStore | None = None,
    policy: MatchPolicy | None = None,
) -> tuple[IncomingTransfer, ReconcileResult]:
    """Record a single manually entered transfer and run matching on it."""
    store = store or default_store()
    results = import_transfers(
        tenant_id,
        [{
            "amount": amount,
            "reference": reference,
            "origin_label": origin_label,
            "raw_description": raw_description,
            "received_at": received_at,
        }],
        source=TransferSource.MANUAL,
        store=store,
        policy=policy,
    )
    result = results[0]
    transfer = store.find_one(IncomingTransfer, id=result.transfer_id)
    return transfer, result


# =============================================================================
# QUERIES
# =============================================================================

def list_transfers(
    tenant_id: int,
    *,
    matched: bool | None = None,
    limit: int = 100,
    offset: int = 0,
    store: RecordStore | None = None,
) -> list[IncomingTransfer]:
    """Newest first. matched=True -> consumed only, False -> unconsumed only."""
    if tenant_id is None:
        raise ValidationError("tenant_id is required")
    store = store or default_store()
    filters = {"tenant_id": tenant_id}
    if matched is not None:
        filters["consumed"] = bool(matched)
    return store.find_many(
        IncomingTransfer,
        filters,
        order_by=(IncomingTransfer.received_at.desc(), IncomingTransfer.id.desc()),
        limit=max(1, min(int(limit), 500)),
        offset=max(0, int(offset)),
    )


# =============================================================================
# FILE PARSING (bank exports)
# =============================================================================

def normalize_rows(raw_rows) -> list[dict]:
    """
    Map header-keyed rows onto the import columns.

    Headers are matched case-insensitively; unknown columns are dropped and
    fully blank rows are skipped.
    """
    rows = []
    for raw in raw_rows:
        normalized = {str(k or "").strip().lower(): v for k, v in raw.items()}
        values = {col: normalized.get(col) for col in CSV_COLUMNS}
        if all(v is None or not str(v).strip() for v in values.values()):
            continue
        rows.append(values)
    return rows


def parse_transfer_csv(text: str) -> list[dict]:
    """Parse a CSV bank export. Requires an "amount" header."""
    reader = csv.DictReader(io.StringIO(text))
    headers = [h.strip().lower() for h in (reader.fieldnames or [])]
    if "amount" not in headers:
        raise ValidationError("CSV must have an 'amount' column")
    return normalize_rows(reader)


def parse_transfer_xlsx(stream) -> list[dict]:
    """Parse the active sheet of an Excel bank export (first row = headers)."""
    from openpyxl import load_workbook

    wb = load_workbook(stream, data_only=True, read_only=True)
    data = list(wb.active.values)
    if not data:
        raise ValidationError("Spreadsheet is empty")
    headers = [str(h).strip().lower() if h is not None else "" for h in data[0]]
    if "amount" not in headers:
        raise ValidationError("Spreadsheet must have an 'amount' column")
    return normalize_rows(
        {headers[i]: row[i] for i in range(min(len(headers), len(row)))}
        for row in data[1:]
    )
