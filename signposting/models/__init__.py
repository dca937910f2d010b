"""
Signposting Library — SQLAlchemy models.

The shared ``db`` handle is created here and bound to the Flask app in
``signposting.create_app``. Model modules import it from this package:

    from signposting.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
