"""
Health check route
"""
from fastapi import APIRouter, Depends

from ..api_models import HealthResponse
from ..engine import TableWatchEngine
from ..entities import utcnow
from .dependencies import get_engine

health_router = APIRouter(tags=["health"])


@health_router.get("/health", response_model=HealthResponse)
async def health(engine: TableWatchEngine = Depends(get_engine)):
    """System health check"""
    return HealthResponse(status="healthy", timestamp=utcnow(), **engine.health())
