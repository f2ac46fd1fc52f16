"""
Flask-Migrate / Alembic entry point.

Usage:
    flask db upgrade
    flask sync-progress [--call-id <id>]
"""

from admissions import create_app

app = create_app()
