"""
Metrics route
"""
from fastapi import APIRouter, Depends

from ..services.fraud_service import FraudMetrics, FraudService
from .dependencies import get_fraud_service

metrics_router = APIRouter(tags=["metrics"])


@metrics_router.get("/metrics", response_model=FraudMetrics)
async def get_metrics(service: FraudService = Depends(get_fraud_service)):
    return service.get_metrics()
