"""
Risk Routes
"""
from fastapi import APIRouter, Depends

from ..entities import RiskScore
from ..services.risk_scorer import RiskScorer
from .dependencies import get_risk_scorer

risk_router = APIRouter(prefix="/risk", tags=["risk"])


@risk_router.get("/{player_id}", response_model=RiskScore)
async def get_risk(
    player_id: str,
    agent_id: str = "",
    scorer: RiskScorer = Depends(get_risk_scorer)
):
    """
    Current risk score for a player

    Path params:
    - player_id: Player ID

    Query params:
    - agent_id: Agent scope (default: none)
    """
    return await scorer.calculate_risk_score(player_id, agent_id)
