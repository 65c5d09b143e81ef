"""
Resource Allocation Platform
Database models package.

The single process-wide ``db`` handle is bound to the app in
``create_app`` via ``db.init_app(app)``; Flask-SQLAlchemy removes the
scoped session at app-context teardown.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
