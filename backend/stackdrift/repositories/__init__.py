"""Repository implementations for data access."""

from stackdrift.repositories.postgres import PostgresPolicyRepository
from stackdrift.repositories.protocols import PersistenceError, PolicyRepository

__all__ = [
    "PolicyRepository",
    "PostgresPolicyRepository",
    "PersistenceError",
]
