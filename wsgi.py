"""
Flask-Migrate / Alembic entry point.

Usage:
    flask db upgrade
    flask seed-roles
"""

from backoffice import create_app

app = create_app()
