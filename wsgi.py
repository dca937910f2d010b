"""
WSGI entry point.

    gunicorn wsgi:app
    FLASK_APP=wsgi.py flask db upgrade     # apply library table migrations

APP_ENV selects the configuration (development when unset).
"""

from signposting import create_app

app = create_app()
