"""
Flask-Migrate / Alembic entry point.

Usage:
    flask db upgrade
    flask generate-agendas
"""

from cadence import create_app

app = create_app()
