"""
Admissions Milestones
SQLAlchemy extension instance shared by every model module.

Usage:
    from admissions.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
