"""Lead stores the import pipeline can persist into."""

from .base import LeadStore
from .memory import InMemoryLeadStore
from .sql import SQLAlchemyLeadStore

__all__ = ["InMemoryLeadStore", "LeadStore", "SQLAlchemyLeadStore"]
