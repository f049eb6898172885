"""
Shop-floor Production Planning Engine
SQLAlchemy database handle shared by every model module.

Usage:
    from prodplan.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
