"""
HTTP intake and admin API.

Form submissions are throttled per client address; decisions made here go
through the same lifecycle as the Discord buttons. Every `/api/` call also
counts toward a per-address request cap, whatever its outcome.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from redeem_panel.config.loader import PanelConfig
from redeem_panel.core.lifecycle import (
    DecisionFailure,
    RedeemService,
    SubmitFailure,
)
from redeem_panel.core.throttle import RequestRateLimiter
from redeem_panel.logger import get_logger
from redeem_panel.storage.models import RedeemDraft, RedeemRequest, RequestStatus, ThrottleScope

logger = get_logger(__name__)

_SUBMIT_STATUS_CODES = {
    SubmitFailure.VALIDATION_FAILED: 400,
    SubmitFailure.DUPLICATE_KEY: 400,
    SubmitFailure.RATE_LIMITED: 429,
}


def client_address() -> str:
    """Client address as resolved by ProxyFix for the trusted proxy hops."""
    return request.remote_addr or "unknown"


def request_to_dict(item: RedeemRequest) -> Dict[str, Any]:
    return {
        "id": item.id,
        "name": item.name,
        "redeemKey": item.redeem_key,
        "inviteLink": item.invite_link,
        "email": item.contact_email,
        "status": item.status.value,
        "timestamp": item.submitted_at.isoformat(),
        "ipAddress": item.submitter_address,
        "userAgent": item.submitter_agent,
        "orderId": item.order_id,
    }


def _json_object() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def _field(payload, name: str) -> str:
    value = payload.get(name)
    return value.strip() if isinstance(value, str) else ""


def create_app(service: RedeemService, config: PanelConfig) -> Flask:
    """Build the Flask application around a service instance."""
    app = Flask(__name__)
    if config.web.proxy_hops:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=config.web.proxy_hops)

    limiter = RequestRateLimiter(
        max_requests=config.web.api_rate_limit,
        window=timedelta(minutes=config.web.api_rate_window_minutes),
        clock=service.store.clock,
    )

    @app.before_request
    def limit_api_calls():
        if not request.path.startswith("/api/"):
            return None
        decision = limiter.hit(client_address())
        if decision.allowed:
            return None
        logger.info("API rate limit hit by %s", client_address())
        return jsonify({
            "success": False,
            "message": decision.message,
            "retryAfter": int(decision.retry_after.total_seconds()),
        }), 429

    @app.after_request
    def add_cors_headers(response):
        response.headers["Access-Control-Allow-Origin"] = config.web.frontend_url
        response.headers["Access-Control-Allow-Credentials"] = "true"
        return response

    def handle_submission(order_id=None):
        payload = _json_object() or request.form
        origin = client_address()
        draft = RedeemDraft(
            name=_field(payload, "name"),
            redeem_key=_field(payload, "redeemKey"),
            invite_link=_field(payload, "inviteLink"),
            identity=origin,
            scope=ThrottleScope.ORIGIN,
            order_id=order_id,
            submitter_address=origin,
            submitter_agent=request.headers.get("User-Agent"),
        )
        outcome = service.submit(draft)

        if outcome.failure is SubmitFailure.VALIDATION_FAILED:
            return jsonify({
                "success": False,
                "message": "Validation failed",
                "errors": outcome.errors,
            }), 400
        if not outcome.ok:
            body = {"success": False, "message": outcome.errors[0]}
            if outcome.throttle is not None:
                body["retryAfter"] = int(outcome.throttle.retry_after.total_seconds())
            return jsonify(body), _SUBMIT_STATUS_CODES[outcome.failure]

        body = {"success": True, "requestId": outcome.request_id}
        if order_id is None:
            body["message"] = ("✅ Your request has been received. "
                               "Please wait while we process your order.")
        else:
            body["message"] = ("✅ Your order has been received. "
                               "Please wait while we process your redemption.")
            body["orderId"] = order_id
        return jsonify(body), 201

    @app.post("/api/redeem")
    def redeem():
        return handle_submission()

    @app.post("/api/redeem-order/<order_id>")
    def redeem_order(order_id):
        return handle_submission(order_id=order_id)

    @app.get("/api/requests")
    def list_requests():
        raw_status = request.args.get("status")
        status = None
        if raw_status:
            try:
                status = RequestStatus(raw_status.upper())
            except ValueError:
                return jsonify({"success": False, "message": "Invalid status filter."}), 400
        requests = service.list_requests(status)
        return jsonify({"success": True, "requests": [request_to_dict(r) for r in requests]})

    @app.get("/api/requests/pending")
    def list_pending():
        requests = service.list_pending()
        return jsonify({"success": True, "requests": [request_to_dict(r) for r in requests]})

    @app.get("/api/requests/<int:request_id>")
    def get_request(request_id):
        item = service.get(request_id)
        if item is None:
            return jsonify({"success": False, "message": "Request not found"}), 404
        return jsonify({"success": True, "request": request_to_dict(item)})

    @app.put("/api/requests/<int:request_id>/status")
    def update_status(request_id):
        payload = _json_object()
        raw_status = payload.get("status")
        if raw_status not in (RequestStatus.APPROVED.value, RequestStatus.REJECTED.value):
            return jsonify({
                "success": False,
                "message": "Invalid status. Must be APPROVED or REJECTED.",
            }), 400

        outcome = service.decide(request_id, RequestStatus(raw_status))
        if outcome.failure is DecisionFailure.NOT_FOUND:
            return jsonify({"success": False, "message": "Request not found"}), 404
        if outcome.failure is DecisionFailure.INVALID_TRANSITION:
            return jsonify({
                "success": False,
                "message": f"Request already {outcome.request.status.value}.",
                "status": outcome.request.status.value,
            }), 409
        return jsonify({"success": True, "message": f"Request status updated to {raw_status}"})

    @app.get("/api/health")
    def health():
        counts = service.store.count_by_status()
        return jsonify({
            "success": True,
            "message": "Server is running",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "requests": {status.value: total for status, total in counts.items()},
        })

    @app.errorhandler(Exception)
    def handle_unexpected(error):
        if isinstance(error, HTTPException):
            return jsonify({"success": False, "message": error.description}), error.code
        logger.exception("Unhandled error")
        return jsonify({"success": False, "message": "Internal server error"}), 500

    return app
