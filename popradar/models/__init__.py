"""
Models package - export all SQLAlchemy models.
"""

from popradar.models.base import Base
from popradar.models.psa_population import PsaPopulation

__all__ = ["Base", "PsaPopulation"]
