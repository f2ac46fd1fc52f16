"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in admissions/__init__.py with no default
limits; this module applies granular limits per route category.

Usage:
    from admissions.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

MILESTONE_LIMIT = "120/minute"
# Full call backfill touches applications × milestones rows
SYNC_LIMIT = "10/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Milestone API:       120/minute
        - Call sync endpoint:  10/minute
        - Health check:        exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("milestone")
    if bp:
        limiter.limit(MILESTONE_LIMIT)(bp)

    sync_view = app.view_functions.get("milestone.sync_progress")
    if sync_view:
        limiter.limit(SYNC_LIMIT)(sync_view)

    bp = app.blueprints.get("health_bp")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured: milestones: %s, sync: %s",
                    MILESTONE_LIMIT, SYNC_LIMIT)
