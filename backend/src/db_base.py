"""
SQLAlchemy declarative base shared by the add-on entitlement models.

Kept free of model and repository imports so that models, repositories and
the test conftest can all import it without cycles.
"""

from sqlalchemy.orm import declarative_base

Base = declarative_base()
