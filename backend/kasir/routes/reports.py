# Overview: Flask API routes for the dashboard and data export/import.

from flask import Blueprint, request

from ..core import current_core
from ..services.data_service import export_data, import_data

reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("/dashboard")
def dashboard():
    """
    Query params:
    - period: today|week|month (default today)
    """
    return current_core().dashboard(request.args.get("period", "today"))


@reports_bp.get("/export")
def export_route():
    body = export_data(current_core().store)
    return body, 200, {"Content-Type": "application/json"}


@reports_bp.post("/import")
def import_route():
    counts = import_data(current_core().store, request.get_data(as_text=True))
    return {"imported": counts}
