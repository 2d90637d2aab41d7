# Overview: Scheduled job endpoint; retries failed order emails on a timer.

from flask import Blueprint, jsonify, current_app

from ..decorators import require_cron_secret
from ..services import retry_service

cron_bp = Blueprint("cron", __name__, url_prefix="/api/cron")


@cron_bp.route("/retry-failed-emails", methods=["GET", "POST"])
@require_cron_secret
def retry_failed_emails_route():
    """
    Batched retry sweep (RETRY_BATCH_SIZE per batch, RETRY_BATCH_DELAY between).

    Authenticated with Authorization: Bearer CRON_SECRET or the scheduler's
    X-Vercel-Cron header.
    """
    try:
        report = retry_service.run_retry_sweep()
    except Exception as e:
        current_app.logger.exception("Cron email retry failed")
        return jsonify({"error": "Failed to retry emails", "details": str(e)}), 500

    return jsonify(report.to_dict())
