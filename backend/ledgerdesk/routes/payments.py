# Overview: Flask API routes for payments; parses input and returns JSON responses.

# backend/ledgerdesk/routes/payments.py
"""
Payment API Routes

WHY: Checkout clients create payments against sales and, for transfers that
matching could only suggest, a user confirms them.

DESIGN:
- Creation is idempotent: a retried request returns the original payment
  with 200 instead of 201
- Confirmation is assisted when a transfer is involved, manual otherwise
- Matching status exposes the engine's confidence for the review UI

SECURITY:
- Caller identity (tenant, user) comes from the upstream auth layer headers
"""

from flask import Blueprint, request, jsonify, g, current_app
from sqlalchemy.exc import OperationalError

from ..decorators import require_identity
from ..errors import ReconciliationError
from ..services import confirmation_service, payment_service


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


# =============================================================================
# PAYMENT CREATION
# =============================================================================

@payments_bp.post("/")
@require_identity
def create_payment_route():
    """
    Create a payment for a sale.

    Request body:
    {
        "sale_id": 123,
        "amount": "100.00",
        "method": "transfer",
        "payment_category": "gateway",        (manual | gateway | external)
        "payment_method_id": "pm-7",          (optional)
        "external_reference": "MP-998877",    (optional)
        "reference": "SALE-9A8619DC"          (optional)
    }

    Returns:
        201: Payment created
        200: Same request seen before; original payment returned
        400: Invalid input
        404: Sale not found
    """
    try:
        data = request.get_json(silent=True) or {}

        if data.get("amount") is None or not data.get("method"):
            return jsonify({"error": "amount and method required"}), 400

        result = payment_service.create_payment(
            tenant_id=g.tenant_id,
            sale_id=data.get("sale_id"),
            amount=data.get("amount"),
            method=data.get("method"),
            payment_method_id=data.get("payment_method_id"),
            external_reference=data.get("external_reference"),
            reference=data.get("reference"),
            payment_category=data.get("payment_category") or "gateway",
            user_id=g.user_id,
        )
        return jsonify(result.to_dict()), 201 if result.created else 200

    except ReconciliationError as e:
        return jsonify({"error": str(e)}), e.http_status
    except OperationalError:
        current_app.logger.exception("Transient failure creating payment")
        return jsonify({"error": "Transient failure, retry"}), 503
    except Exception:
        current_app.logger.exception("Failed to create payment")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# PAYMENT QUERIES
# =============================================================================

@payments_bp.get("/<int:payment_id>")
@require_identity
def get_payment_route(payment_id: int):
    """Get a single payment."""
    try:
        payment = payment_service.get_payment(payment_id, tenant_id=g.tenant_id)
        return jsonify({"payment": payment.to_dict()}), 200
    except ReconciliationError as e:
        return jsonify({"error": str(e)}), e.http_status
    except OperationalError:
        current_app.logger.exception("Transient failure reading payment")
        return jsonify({"error": "Transient failure, retry"}), 503
    except Exception:
        current_app.logger.exception("Failed to get payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/<int:payment_id>/matching-status")
@require_identity
def get_matching_status_route(payment_id: int):
    """Matching confidence, linked transfer and confirmation history."""
    try:
        status = payment_service.get_payment_matching_status(payment_id, tenant_id=g.tenant_id)
        return jsonify(status), 200
    except ReconciliationError as e:
        return jsonify({"error": str(e)}), e.http_status
    except OperationalError:
        current_app.logger.exception("Transient failure reading matching status")
        return jsonify({"error": "Transient failure, retry"}), 503
    except Exception:
        current_app.logger.exception("Failed to get matching status")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# CONFIRMATION
# =============================================================================

@payments_bp.post("/<int:payment_id>/confirm")
@require_identity
def confirm_payment_route(payment_id: int):
    """
    Confirm a pending payment.

    Request body (optional):
    {
        "transfer_id": 55    (defaults to the suggested transfer, if any)
    }

    Returns:
        200: Payment confirmed
        404: Payment or transfer not found
        409: Payment already confirmed, or lost a concurrent confirmation
    """
    try:
        data = request.get_json(silent=True) or {}
        transfer_id = data.get("transfer_id")
        if transfer_id is not None and not isinstance(transfer_id, int):
            return jsonify({"error": "transfer_id must be an integer"}), 400

        result = confirmation_service.confirm_payment(
            payment_id,
            tenant_id=g.tenant_id,
            user_id=g.user_id,
            transfer_id=transfer_id,
        )
        return jsonify(result.to_dict()), 200

    except ReconciliationError as e:
        return jsonify({"error": str(e)}), e.http_status
    except OperationalError:
        current_app.logger.exception("Transient failure confirming payment")
        return jsonify({"error": "Transient failure, retry"}), 503
    except Exception:
        current_app.logger.exception("Failed to confirm payment")
        return jsonify({"error": "Internal server error"}), 500
