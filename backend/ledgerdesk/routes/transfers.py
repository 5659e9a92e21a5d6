# Overview: Flask API routes for incoming transfers; import, manual entry and listing.

# backend/ledgerdesk/routes/transfers.py
"""
Incoming Transfer API Routes

WHY: Bank/wallet receipts enter here and are matched against pending payments
as part of the same request.

DESIGN:
- Batch import returns one matching outcome per transfer, in input order
- A bad row rejects the whole batch before anything is stored
"""

from flask import Blueprint, request, jsonify, g, current_app
from sqlalchemy.exc import OperationalError

from ..decorators import require_identity
from ..enums import TransferSource
from ..errors import ReconciliationError
from ..services import transfer_service


transfers_bp = Blueprint("transfers", __name__, url_prefix="/api/transfers")


def _parse_bool(value):
    if value is None or value == "":
        return None
    lowered = value.strip().lower()
    if lowered in ("true", "1", "yes"):
        return True
    if lowered in ("false", "0", "no"):
        return False
    raise ValueError(value)


@transfers_bp.post("/import")
@require_identity
def import_transfers_route():
    """
    Import a batch of transfers and run matching on each.

    Request body:
    {
        "source": "api",     (api | csv | manual, default api)
        "transfers": [
            {"amount": "100.00", "reference": "SALE-1", "origin_label": "J. Perez",
             "raw_description": "TRANSF SALE-1", "received_at": "2026-01-10T12:00:00Z"}
        ]
    }

    Returns:
        201: {"results": [...]} one outcome per transfer
        400: Invalid batch
    """
    try:
        data = request.get_json(silent=True) or {}
        rows = data.get("transfers")
        if not isinstance(rows, list):
            return jsonify({"error": "transfers must be a list"}), 400

        results = transfer_service.import_transfers(
            g.tenant_id,
            rows,
            source=data.get("source") or "api",
        )
        return jsonify({"results": [r.to_dict() for r in results]}), 201

    except ReconciliationError as e:
        return jsonify({"error": str(e)}), e.http_status
    except OperationalError:
        current_app.logger.exception("Transient failure importing transfers")
        return jsonify({"error": "Transient failure, retry"}), 503
    except Exception:
        current_app.logger.exception("Failed to import transfers")
        return jsonify({"error": "Internal server error"}), 500


@transfers_bp.post("/upload")
@require_identity
def upload_transfers_route():
    """
    Import a bank export file (multipart field "file", .csv or .xlsx).

    Columns: amount (required), reference, origin_label, raw_description,
    received_at. Unknown columns are ignored.
    """
    if "file" not in request.files:
        return jsonify({"error": "file is required"}), 400

    file = request.files["file"]
    filename = file.filename or ""
    ext = filename.split(".")[-1].lower()

    try:
        if ext == "csv":
            rows = transfer_service.parse_transfer_csv(file.stream.read().decode("utf-8-sig"))
            source = TransferSource.CSV
        elif ext in {"xlsx", "xlsm"}:
            rows = transfer_service.parse_transfer_xlsx(file.stream)
            source = TransferSource.CSV
        else:
            return jsonify({"error": "Unsupported file format"}), 400

        results = transfer_service.import_transfers(g.tenant_id, rows, source=source)
        return jsonify({"results": [r.to_dict() for r in results]}), 201

    except ReconciliationError as e:
        return jsonify({"error": str(e)}), e.http_status
    except UnicodeDecodeError:
        return jsonify({"error": "File must be UTF-8 encoded"}), 400
    except OperationalError:
        current_app.logger.exception("Transient failure importing transfer file")
        return jsonify({"error": "Transient failure, retry"}), 503
    except Exception:
        current_app.logger.exception("Failed to import transfer file")
        return jsonify({"error": "Failed to parse upload"}), 400


@transfers_bp.post("/manual")
@require_identity
def create_manual_transfer_route():
    """Record one transfer typed in by a user."""
    try:
        data = request.get_json(silent=True) or {}
        if data.get("amount") is None:
            return jsonify({"error": "amount required"}), 400

        transfer, result = transfer_service.create_manual_transfer(
            g.tenant_id,
            data.get("amount"),
            reference=data.get("reference"),
            origin_label=data.get("origin_label"),
            raw_description=data.get("raw_description"),
            received_at=data.get("received_at"),
        )
        return jsonify({"transfer": transfer.to_dict(), "result": result.to_dict()}), 201

    except ReconciliationError as e:
        return jsonify({"error": str(e)}), e.http_status
    except OperationalError:
        current_app.logger.exception("Transient failure creating manual transfer")
        return jsonify({"error": "Transient failure, retry"}), 503
    except Exception:
        current_app.logger.exception("Failed to create manual transfer")
        return jsonify({"error": "Internal server error"}), 500


@transfers_bp.get("/")
@require_identity
def list_transfers_route():
    """
    List transfers, newest first.

    Query params:
    - matched: true (consumed) | false (unconsumed)
    - limit: default 100, max 500
    - offset: default 0
    """
    try:
        matched = _parse_bool(request.args.get("matched"))
    except ValueError:
        return jsonify({"error": "matched must be true or false"}), 400

    limit = request.args.get("limit", 100, type=int)
    offset = request.args.get("offset", 0, type=int)

    try:
        transfers = transfer_service.list_transfers(g.tenant_id, matched=matched, limit=limit, offset=offset)
        return jsonify({"transfers": [t.to_dict() for t in transfers]}), 200
    except ReconciliationError as e:
        return jsonify({"error": str(e)}), e.http_status
    except OperationalError:
        current_app.logger.exception("Transient failure listing transfers")
        return jsonify({"error": "Transient failure, retry"}), 503
    except Exception:
        current_app.logger.exception("Failed to list transfers")
        return jsonify({"error": "Internal server error"}), 500
