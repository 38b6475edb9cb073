"""
Route dependencies - resolve services from the running engine
"""
from fastapi import Depends, Request

from ..engine import TableWatchEngine
from ..services.alert_service import AlertAggregator, AlertService
from ..services.event_processor import EventProcessor
from ..services.fraud_service import FraudService
from ..services.risk_scorer import RiskScorer


def get_engine(request: Request) -> TableWatchEngine:
    return request.app.state.engine


def get_fraud_service(engine: TableWatchEngine = Depends(get_engine)) -> FraudService:
    return engine.fraud_service


def get_risk_scorer(engine: TableWatchEngine = Depends(get_engine)) -> RiskScorer:
    return engine.risk_scorer


def get_alert_service(engine: TableWatchEngine = Depends(get_engine)) -> AlertService:
    return engine.alert_service


def get_alert_aggregator(engine: TableWatchEngine = Depends(get_engine)) -> AlertAggregator:
    return engine.alert_aggregator


def get_event_processor(engine: TableWatchEngine = Depends(get_engine)) -> EventProcessor:
    return engine.event_processor
