# Overview: Flask API routes for cash-register sessions; parses input and returns JSON responses.

"""
Cash Session API Routes

- GET  /today       the operator's register status for the business day
- POST /open        open with an opening float
- POST /close       explicit close with an optional drawer count
- POST /auto-close  periodic trigger (admin); closes every due session
- GET  /history     closing history with date and operator filters (admin)
"""

from datetime import date

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role, scoped_branch_id
from ..errors import PosError, ValidationError
from ..models.auth import ROLE_ADMIN, ROLE_CASHIER
from ..services import cash_session_service
from ..validation import coerce_int


cash_sessions_bp = Blueprint("cash_sessions", __name__, url_prefix="/api/cash-sessions")


@cash_sessions_bp.get("/today")
@require_auth
def today_route():
    branch_id, error = scoped_branch_id(request.args.get("branch_id"))
    if error:
        return error
    try:
        status = cash_session_service.get_session_status(g.current_user.id, branch_id)
        return jsonify(status), 200
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load cash session status")
        return jsonify({"error": "Internal server error"}), 500


@cash_sessions_bp.post("/open")
@require_auth
@require_role(ROLE_CASHIER)
def open_route():
    """
    Request body:
    {
        "branch_id": 1,               (optional, defaults to the user's branch)
        "opening_float_cents": 50000
    }
    """
    data = request.get_json(silent=True) or {}
    branch_id, error = scoped_branch_id(data.get("branch_id"))
    if error:
        return error
    try:
        cash_session = cash_session_service.open_session(
            g.current_user.id,
            branch_id,
            data.get("opening_float_cents", 0),
        )
        return jsonify({"session": cash_session.to_dict()}), 201
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to open cash session")
        return jsonify({"error": "Internal server error"}), 500


@cash_sessions_bp.post("/close")
@require_auth
@require_role(ROLE_CASHIER)
def close_route():
    """
    Request body:
    {
        "branch_id": 1,                (optional)
        "counted_cash_cents": 74350    (optional)
    }
    """
    data = request.get_json(silent=True) or {}
    branch_id, error = scoped_branch_id(data.get("branch_id"))
    if error:
        return error
    try:
        cash_session = cash_session_service.close_session(
            g.current_user.id,
            branch_id,
            data.get("counted_cash_cents"),
            closed_by_user_id=g.current_user.id,
        )
        return jsonify({"session": cash_session.to_dict()}), 200
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to close cash session")
        return jsonify({"error": "Internal server error"}), 500


@cash_sessions_bp.post("/auto-close")
@require_auth
@require_role(ROLE_ADMIN)
def auto_close_route():
    try:
        closed = cash_session_service.auto_close_due_sessions()
        return jsonify({
            "closed": [s.to_dict() for s in closed],
            "count": len(closed),
        }), 200
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Auto-close run failed")
        return jsonify({"error": "Internal server error"}), 500


def _parse_day(value, field):
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValidationError(f"{field} must be YYYY-MM-DD", {"field": field, "value": value})


@cash_sessions_bp.get("/history")
@require_auth
@require_role(ROLE_ADMIN)
def history_route():
    """
    Closing history, newest first.

    Query params: branch_id, operator_id, from, to (YYYY-MM-DD business
    dates, inclusive), open=1, limit (default and max 100).
    """
    args = request.args
    try:
        sessions = cash_session_service.list_sessions(
            branch_id=coerce_int(args["branch_id"], "branch_id") if args.get("branch_id") else None,
            operator_id=coerce_int(args["operator_id"], "operator_id") if args.get("operator_id") else None,
            date_from=_parse_day(args.get("from"), "from"),
            date_to=_parse_day(args.get("to"), "to"),
            only_open=args.get("open") in ("1", "true"),
            limit=coerce_int(args.get("limit", cash_session_service.MAX_HISTORY_LIMIT), "limit"),
        )
        return jsonify({"sessions": [s.to_dict() for s in sessions], "count": len(sessions)}), 200
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load cash session history")
        return jsonify({"error": "Internal server error"}), 500
