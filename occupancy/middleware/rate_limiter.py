"""
Per-blueprint request limits (Flask-Limiter, keyed by remote address).

``occupancy.limiter`` is created without default limits. The limits here
attach to whole blueprints, and the ``RATE_LIMITS`` config key can replace
any of them.
"""

import logging

logger = logging.getLogger(__name__)

DEFAULT_LIMITS = {
    "transitions": "60/minute",
    "recipients": "30/minute",
}


def init_rate_limits(app, limiter):
    """Attach limits to registered blueprints; no-op under TESTING."""
    if app.config.get("TESTING"):
        return

    limits = {**DEFAULT_LIMITS, **app.config.get("RATE_LIMITS", {})}
    applied = []
    for name, limit in limits.items():
        bp = app.blueprints.get(name)
        if bp is None:
            logger.warning("Rate limit for unknown blueprint %r ignored", name)
            continue
        limiter.limit(limit)(bp)
        applied.append(f"{name}={limit}")

    app.logger.info("Rate limits: %s", ", ".join(applied) or "none")
