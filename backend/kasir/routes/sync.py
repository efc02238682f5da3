# Overview: Flask API routes to inspect and drive the outbound sync queue.

from flask import Blueprint, current_app, request

from ..core import current_core
from ..services.remote_backend import RemoteError
from ..services.sync_service import FLUSH_PARTIAL
from ..time_utils import to_utc_z

sync_bp = Blueprint("sync", __name__, url_prefix="/api/sync")


@sync_bp.get("/status")
def sync_status():
    sync = current_core().sync
    return {
        "online": sync.probe.is_online(),
        "configured": sync.remote is not None,
        "pending": len(sync.pending()),
        "dead_letters": len(sync.dead_letters()),
        "last_sync": to_utc_z(sync.last_sync_time()),
    }


@sync_bp.get("/queue")
def list_queue():
    items = current_core().sync.pending()
    return {"items": [i.to_dict() for i in items], "count": len(items)}


@sync_bp.post("/flush")
def flush():
    """
    Returns:
    - 200: every attempted item was acknowledged, or the flush was skipped
    - 207: some items failed and stay queued (or were dead-lettered)
    """
    result = current_core().sync.flush()
    return result.to_dict(), 207 if result.status == FLUSH_PARTIAL else 200


@sync_bp.post("/pull/<table>")
def pull(table: str):
    filters = request.get_json(silent=True) or {}
    try:
        result = current_core().sync.pull(table, filters)
    except RemoteError as exc:
        current_app.logger.exception("Pull failed for %s", table)
        return {"error": str(exc), "status_code": exc.status_code}, 502
    return result.to_dict()


@sync_bp.get("/dead-letters")
def list_dead_letters():
    items = current_core().sync.dead_letters()
    return {"items": [i.to_dict() for i in items], "count": len(items)}


@sync_bp.post("/dead-letters/requeue")
def requeue_dead_letters():
    return {"requeued": current_core().sync.requeue_dead_letters()}
