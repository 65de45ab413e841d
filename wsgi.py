"""
WSGI entry point and Flask-Migrate / Alembic entry point.

Usage:
    gunicorn wsgi:app
    flask --app wsgi db upgrade
    flask --app wsgi seed-catalog
"""

from workflow_engine import create_app

app = create_app()
