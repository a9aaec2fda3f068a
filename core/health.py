# core/health.py

from typing import Dict


def check_credentials(pool) -> str:
    if pool is None or pool.total_count() == 0:
        return "fail"
    return "ok" if pool.available_count() > 0 else "degraded"


def check_notifier(notifier) -> str:
    return "ok" if notifier is not None and notifier.configured else "disabled"


async def full_health_check(services) -> Dict:
    """
    Readiness is driven by the credential pool only; alerts and images
    are side channels and never make the service unready.
    """
    results = {
        "gemini_keys": check_credentials(getattr(services, "pool", None)),
        "notifier": check_notifier(getattr(services, "notifier", None)),
    }

    overall = "ok" if results["gemini_keys"] == "ok" else "degraded"

    pool = getattr(services, "pool", None)
    return {
        "status": overall,
        "dependencies": results,
        "keys": pool.status() if pool is not None else None,
    }
