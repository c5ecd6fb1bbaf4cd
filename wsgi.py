"""
WSGI / Flask-Migrate entry point.

Usage:
    gunicorn wsgi:app
    flask db upgrade
    flask seed-epm-demo
"""

from fieldops import create_app

app = create_app()
