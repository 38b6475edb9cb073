from .graph import InteractionEdge, PlayerInteractionGraph, GraphSnapshot, edge_key
from .scoring import SoftPlayScorer, DefaultSoftPlayScorer, ChipFlowAnalyzer, ChipFlowSummary
from .detector import CollusionDetector, CollusionResult, EvidenceItem, EvidencePacket

__all__ = [
    "InteractionEdge",
    "PlayerInteractionGraph",
    "GraphSnapshot",
    "edge_key",
    "SoftPlayScorer",
    "DefaultSoftPlayScorer",
    "ChipFlowAnalyzer",
    "ChipFlowSummary",
    "CollusionDetector",
    "CollusionResult",
    "EvidenceItem",
    "EvidencePacket",
]
