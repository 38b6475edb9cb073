"""
Alert Routes - REST API controllers
Uses service layer for business logic
"""
from datetime import timedelta
from typing import List

from fastapi import APIRouter, Depends, HTTPException

from ..api_models import ReviewRequest
from ..entities import AlertStats, AntiCheatAlert, RiskPlayerSummary, utcnow
from ..errors import AlertNotFoundError
from ..services.alert_service import AlertAggregator, AlertService
from .dependencies import get_alert_aggregator, get_alert_service

alerts_router = APIRouter(prefix="/alerts", tags=["alerts"])


# ============================================================================
# ALERT ENDPOINTS
# ============================================================================

@alerts_router.get("/pending", response_model=List[AntiCheatAlert])
async def get_pending_alerts(
    limit: int = 100,
    service: AlertService = Depends(get_alert_service)
):
    """Pending alerts, newest first"""
    return await service.get_pending_alerts(limit)


@alerts_router.get("/summary", response_model=AlertStats)
async def get_alert_summary(
    hours: int = 24,
    aggregator: AlertAggregator = Depends(get_alert_aggregator)
):
    """
    Aggregated alert counts

    Query params:
    - hours: Lookback window (default: 24)
    """
    end = utcnow()
    return await aggregator.aggregate_summary(end - timedelta(hours=hours), end)


@alerts_router.get("/high-risk-players", response_model=List[RiskPlayerSummary])
async def get_high_risk_players(
    hours: int = 24,
    min_score: float = 0.75,
    limit: int = 10,
    aggregator: AlertAggregator = Depends(get_alert_aggregator)
):
    end = utcnow()
    return await aggregator.get_high_risk_players(end - timedelta(hours=hours), end, min_score, limit)


@alerts_router.get("/player/{player_id}", response_model=List[AntiCheatAlert])
async def get_player_alerts(
    player_id: str,
    limit: int = 100,
    service: AlertService = Depends(get_alert_service)
):
    return await service.get_player_alerts(player_id, limit)


@alerts_router.post("/{alert_id}/review", response_model=AntiCheatAlert)
async def review_alert(
    alert_id: str,
    review: ReviewRequest,
    service: AlertService = Depends(get_alert_service)
):
    """
    Resolve a pending alert

    Path params:
    - alert_id: Alert ID

    Body:
    - reviewer_id, status (reviewed, dismissed, confirmed), notes
    """
    try:
        return await service.review_alert(alert_id, review.reviewer_id, review.status, review.notes)
    except AlertNotFoundError:
        raise HTTPException(status_code=404, detail=f"Alert {alert_id} not found")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
