"""
Workflow Progression & Alert Engine
SQLAlchemy handle shared by every model module.

Usage:
    from workflow_engine.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
