"""API dependencies package."""
from bulkverify.api.deps.database import get_db

__all__ = ["get_db"]
