# Overview: Flask API routes for cash periods (sessions, boxes, registers).

# backend/ledgerdesk/routes/cash_periods.py
"""
Cash Period API Routes

WHY: Cashiers open a period with a float, record movements, and close it
with a count. Sessions, daily boxes and register shifts share these routes
and differ only by "kind".

DESIGN:
- Shift lifecycle: open -> close (immutable once closed)
- Closing reports the calculated balance and the counted difference
"""

from flask import Blueprint, request, jsonify, g, current_app
from sqlalchemy.exc import OperationalError

from ..decorators import require_identity
from ..errors import ReconciliationError
from ..services import cash_period_service


cash_periods_bp = Blueprint("cash_periods", __name__, url_prefix="/api/cash-periods")


@cash_periods_bp.post("/open")
@require_identity
def open_period_route():
    """
    Open a cash period.

    Request body:
    {
        "kind": "box",               (session | box | register)
        "owner_id": "BRANCH-1",      (seller id for session/register)
        "opening_balance": "1000.00",
        "notes": "..."               (optional)
    }

    Returns:
        201: Period opened
        400: Invalid input
        404: Seller not found
        409: Owner already has an open period of this kind
    """
    try:
        data = request.get_json(silent=True) or {}
        if not data.get("kind") or data.get("owner_id") in (None, ""):
            return jsonify({"error": "kind and owner_id required"}), 400

        period = cash_period_service.open_period(
            data.get("kind"),
            g.tenant_id,
            data.get("owner_id"),
            data.get("opening_balance", "0.00"),
            user_id=g.user_id,
            notes=data.get("notes"),
        )
        return jsonify({"cash_period": period.to_dict()}), 201

    except ReconciliationError as e:
        return jsonify({"error": str(e)}), e.http_status
    except OperationalError:
        current_app.logger.exception("Transient failure opening cash period")
        return jsonify({"error": "Transient failure, retry"}), 503
    except Exception:
        current_app.logger.exception("Failed to open cash period")
        return jsonify({"error": "Internal server error"}), 500


@cash_periods_bp.post("/<int:period_id>/close")
@require_identity
def close_period_route(period_id: int):
    """
    Close a cash period with the counted balance.

    Request body:
    {
        "closing_balance": "1430.00",
        "notes": "..."     (optional)
    }

    Returns:
        200: Summary with calculated balance and difference
        409: Period already closed
    """
    try:
        data = request.get_json(silent=True) or {}
        if data.get("closing_balance") is None:
            return jsonify({"error": "closing_balance required"}), 400

        summary = cash_period_service.close_period(
            period_id,
            data.get("closing_balance"),
            tenant_id=g.tenant_id,
            user_id=g.user_id,
            notes=data.get("notes"),
        )
        return jsonify(summary.to_dict()), 200

    except ReconciliationError as e:
        return jsonify({"error": str(e)}), e.http_status
    except OperationalError:
        current_app.logger.exception("Transient failure closing cash period")
        return jsonify({"error": "Transient failure, retry"}), 503
    except Exception:
        current_app.logger.exception("Failed to close cash period")
        return jsonify({"error": "Internal server error"}), 500


@cash_periods_bp.post("/<int:period_id>/movements")
@require_identity
def add_movement_route(period_id: int):
    """
    Record a movement.

    Request body:
    {
        "type": "manual_expense",    (sale | refund | manual_income | manual_expense)
        "amount": "70.00",
        "payment_method": "cash",    (cash | transfer, optional)
        "reference_id": "...",       (optional)
        "note": "..."                (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        if not data.get("type") or data.get("amount") is None:
            return jsonify({"error": "type and amount required"}), 400

        movement = cash_period_service.add_movement(
            period_id,
            data.get("type"),
            data.get("amount"),
            payment_method=data.get("payment_method"),
            reference_id=data.get("reference_id"),
            note=data.get("note"),
            tenant_id=g.tenant_id,
            user_id=g.user_id,
        )
        return jsonify({"movement": movement.to_dict()}), 201

    except ReconciliationError as e:
        return jsonify({"error": str(e)}), e.http_status
    except OperationalError:
        current_app.logger.exception("Transient failure adding cash movement")
        return jsonify({"error": "Transient failure, retry"}), 503
    except Exception:
        current_app.logger.exception("Failed to add cash movement")
        return jsonify({"error": "Internal server error"}), 500


@cash_periods_bp.get("/current")
@require_identity
def get_current_period_route():
    """
    Get the open period for an owner.

    Query params: kind, owner_id
    """
    kind = request.args.get("kind")
    owner_id = request.args.get("owner_id")
    if not kind or not owner_id:
        return jsonify({"error": "kind and owner_id required"}), 400

    try:
        period = cash_period_service.get_open_period(kind, g.tenant_id, owner_id)
        if not period:
            return jsonify({"cash_period": None}), 200
        summary = cash_period_service.get_period_summary(period.id, tenant_id=g.tenant_id)
        return jsonify(summary.to_dict()), 200
    except ReconciliationError as e:
        return jsonify({"error": str(e)}), e.http_status
    except OperationalError:
        current_app.logger.exception("Transient failure reading current cash period")
        return jsonify({"error": "Transient failure, retry"}), 503
    except Exception:
        current_app.logger.exception("Failed to get current cash period")
        return jsonify({"error": "Internal server error"}), 500


@cash_periods_bp.get("/<int:period_id>")
@require_identity
def get_period_route(period_id: int):
    """Period with totals and its movements."""
    try:
        summary = cash_period_service.get_period_summary(period_id, tenant_id=g.tenant_id)
        movements = cash_period_service.get_period_movements(period_id)
        payload = summary.to_dict()
        payload["movements"] = [m.to_dict() for m in movements]
        return jsonify(payload), 200
    except ReconciliationError as e:
        return jsonify({"error": str(e)}), e.http_status
    except OperationalError:
        current_app.logger.exception("Transient failure reading cash period")
        return jsonify({"error": "Transient failure, retry"}), 503
    except Exception:
        current_app.logger.exception("Failed to get cash period")
        return jsonify({"error": "Internal server error"}), 500
