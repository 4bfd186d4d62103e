"""API endpoints package."""
from bulkverify.api.endpoints import queue

__all__ = ["queue"]
