"""
SiteLedger
SQLAlchemy extension instance shared by every model module.

Model modules import ``db`` from here; the app factory binds it with
``db.init_app(app)`` and imports each model module so ``create_all`` sees
every table.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
