"""
Flask-Migrate / Alembic entry point.

Usage:
    flask db upgrade
    flask normalize-legacy-statuses
"""

from occupancy import create_app

app = create_app()
