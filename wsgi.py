"""
WSGI / Flask-Migrate / Alembic entry point.

Usage:
    flask --app wsgi db upgrade
    flask --app wsgi expire-allocations
    gunicorn wsgi:app
"""

from resourcing import create_app

app = create_app()
