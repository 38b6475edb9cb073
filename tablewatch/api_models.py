# tablewatch/api_models.py

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel


# ============================================================================
# Request/Response Models (API Layer)
# ============================================================================

class HealthResponse(BaseModel):
    status: str
    kafka: str
    redis: str
    soft_play_scorer: Dict[str, Any]
    timestamp: datetime


class ReviewRequest(BaseModel):
    """Reviewer decision on a pending alert"""
    reviewer_id: str
    status: str
    notes: Optional[str] = None


class EventAccepted(BaseModel):
    queued: bool = True
    pending: int = 0
