"""
WSGI / Flask-Migrate entry point.

Usage:
    flask --app wsgi db migrate -m "description"
    flask --app wsgi db upgrade
    flask --app wsgi seed-reference-data
    gunicorn wsgi:app
"""

from prodplan import create_app

app = create_app()
