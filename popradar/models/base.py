"""
SQLAlchemy 2.0 async DeclarativeBase for Pop Radar.

All models inherit from this Base.
"""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all Pop Radar database models."""
    pass
