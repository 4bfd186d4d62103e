"""API router configuration."""
from fastapi import APIRouter
from bulkverify.api.endpoints import queue

api_router = APIRouter()

api_router.include_router(queue.router)
