"""Diagnostics routes - system health."""
from flask import Blueprint, jsonify, request

from panel.health_checks import run_all_checks

bp = Blueprint('diagnostics', __name__)


@bp.route('/health')
def health():
    """Run all checks and return JSON; ?verify=1 also calls the LLM API."""
    verify = request.args.get('verify', '').lower() in ('1', 'true', 'yes')
    checks = run_all_checks(verify_api=verify)
    error_count = sum(1 for c in checks.values() if c["status"] == "error")
    return jsonify({"ok": error_count == 0, "checks": checks})
