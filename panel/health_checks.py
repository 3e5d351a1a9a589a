"""Health check functions for system diagnostics."""
import sqlite3
from typing import Dict, Any

import requests


def check_config_file() -> Dict[str, Any]:
    """Check if config.yaml exists and has required fields."""
    from config import CONFIG_PATH
    config_path = CONFIG_PATH

    if not config_path.exists():
        return {
            "status": "error",
            "message": "config.yaml not found",
            "fix": "Copy config.yaml.example to data/config.yaml and fill in your settings"
        }

    try:
        import yaml
        with open(config_path) as f:
            config = yaml.safe_load(f) or {}

        missing = []
        if not (config.get("llm") or {}).get("chat_model"):
            missing.append("llm.chat_model")
        if "planner" not in config:
            missing.append("planner")

        if missing:
            return {
                "status": "warning",
                "message": f"Missing: {', '.join(missing)}",
                "fix": "Edit config.yaml and add the missing values"
            }

        return {"status": "ok", "message": "Config file valid"}

    except Exception as e:
        return {
            "status": "error",
            "message": f"Error reading config: {str(e)[:50]}",
            "fix": "Check config.yaml syntax (must be valid YAML)"
        }


def check_openrouter_api(verify: bool = False) -> Dict[str, Any]:
    """Check if the OpenRouter API key is configured, optionally hitting /models."""
    try:
        from config import CHAT_API_URL, load_chat_api_key

        api_key = load_chat_api_key()
        if not api_key:
            return {
                "status": "error",
                "message": "API key not configured",
                "fix": "Set OPENROUTER_API_KEY env var or openrouter.api_key in data/secrets.yaml"
            }

        if not verify:
            return {"status": "ok", "message": "API key configured"}

        response = requests.get(
            f"{CHAT_API_URL}/models",
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=10
        )

        if response.status_code == 200:
            return {"status": "ok", "message": "API key valid"}
        elif response.status_code == 401:
            return {
                "status": "error",
                "message": "Invalid API key",
                "fix": "Update OPENROUTER_API_KEY"
            }
        else:
            return {
                "status": "warning",
                "message": f"API returned {response.status_code}",
                "fix": "API key may be valid but rate limited"
            }

    except Exception as e:
        return {
            "status": "warning",
            "message": f"Could not verify: {str(e)[:30]}",
            "fix": "Check internet connection"
        }


def check_plan_database() -> Dict[str, Any]:
    """Count plan records by status; flag a backlog of failed generations."""
    from config import PLAN_DB_PATH

    if not PLAN_DB_PATH.exists():
        return {
            "status": "ok",
            "message": "No plans yet",
            "details": {}
        }

    try:
        conn = sqlite3.connect(str(PLAN_DB_PATH))
        try:
            rows = conn.execute(
                "SELECT status, COUNT(*) FROM meal_plans GROUP BY status"
            ).fetchall()
        finally:
            conn.close()

        details = {status: count for status, count in rows}
        total = sum(details.values())
        errors = details.get("error", 0)

        if errors:
            return {
                "status": "warning",
                "message": f"{errors} of {total} plans failed their last generation",
                "details": details,
                "fix": "Check data/logs/meal_planner.log, then run refresh_meal_plans.py"
            }

        return {"status": "ok", "message": f"{total} plans stored", "details": details}

    except Exception as e:
        return {
            "status": "error",
            "message": f"Check failed: {str(e)[:50]}",
            "fix": "Check database connectivity"
        }


def check_task_queue() -> Dict[str, Any]:
    """Report queued generation tasks waiting for the huey consumer."""
    try:
        from panel.jobs import huey
        pending = huey.pending_count()
        return {"status": "ok", "message": f"{pending} tasks queued", "details": {"pending": pending}}
    except Exception as e:
        return {
            "status": "warning",
            "message": str(e)[:50],
            "fix": "Check data/huey.db and the huey consumer"
        }


def run_all_checks(verify_api: bool = False) -> Dict[str, Dict[str, Any]]:
    """Run all health checks and return results."""
    return {
        "config": check_config_file(),
        "openrouter": check_openrouter_api(verify=verify_api),
        "plans": check_plan_database(),
        "queue": check_task_queue(),
    }
