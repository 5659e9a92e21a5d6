# Overview: Flask API routes for sale balances; live fold and cache refresh.

# backend/ledgerdesk/routes/sales.py
"""
Sale Balance API Routes

WHY: The checkout screen needs the authoritative balance, not the cached
column. Recalculate persists the fold back into the cache.
"""

from flask import Blueprint, jsonify, g, current_app
from sqlalchemy.exc import OperationalError

from ..decorators import require_identity
from ..errors import ReconciliationError
from ..services import sales_service


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.get("/<int:sale_id>/balance")
@require_identity
def get_sale_balance_route(sale_id: int):
    """Live balance folded from confirmed payments."""
    try:
        balance = sales_service.get_sale_balance(sale_id, tenant_id=g.tenant_id)
        return jsonify({"sale_id": sale_id, **balance.to_dict()}), 200
    except ReconciliationError as e:
        return jsonify({"error": str(e)}), e.http_status
    except OperationalError:
        current_app.logger.exception("Transient failure computing sale balance")
        return jsonify({"error": "Transient failure, retry"}), 503
    except Exception:
        current_app.logger.exception("Failed to compute sale balance")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:sale_id>/recalculate")
@require_identity
def recalculate_sale_route(sale_id: int):
    """Refresh the sale's cached paid/balance and status."""
    try:
        balance = sales_service.recalculate_sale(sale_id, tenant_id=g.tenant_id)
        sale = sales_service.get_sale(sale_id, tenant_id=g.tenant_id)
        return jsonify({"sale": sale.to_dict(), "balance": balance.to_dict()}), 200
    except ReconciliationError as e:
        return jsonify({"error": str(e)}), e.http_status
    except OperationalError:
        current_app.logger.exception("Transient failure recalculating sale")
        return jsonify({"error": "Transient failure, retry"}), 503
    except Exception:
        current_app.logger.exception("Failed to recalculate sale")
        return jsonify({"error": "Internal server error"}), 500
