"""
Action Routes - live detection entry points
"""
from fastapi import APIRouter, Depends, HTTPException, status

from ..api_models import EventAccepted
from ..entities import PlayerAction
from ..errors import QueueFullError
from ..services.event_processor import EventProcessor, FraudEvent
from ..services.fraud_service import FraudDetectionResult, FraudService
from .dependencies import get_event_processor, get_fraud_service

actions_router = APIRouter(tags=["detection"])


@actions_router.post("/actions", response_model=FraudDetectionResult)
async def process_action(
    action: PlayerAction,
    service: FraudService = Depends(get_fraud_service)
):
    """Run every detector on one player action and return the joined verdict"""
    return await service.process_player_action(action)


@actions_router.post("/events", response_model=EventAccepted, status_code=status.HTTP_202_ACCEPTED)
async def push_event(
    event: FraudEvent,
    processor: EventProcessor = Depends(get_event_processor)
):
    """
    Queue an event for background processing

    Returns 503 when the event buffer is full
    """
    try:
        processor.push_event(event)
    except QueueFullError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return EventAccepted(pending=processor.pending)
