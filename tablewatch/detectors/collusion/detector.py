"""
Collusion detection
Scores player pairs from the interaction graph and finds dense rings
"""
import asyncio
import logging
from datetime import datetime
from typing import Dict, List, Optional

import networkx as nx
from pydantic import BaseModel, Field

from ...config import CollusionDetectionConfig
from ...constants import SEVERITY_CRITICAL, SEVERITY_HIGH, SEVERITY_MEDIUM, SEVERITY_ORDER
from ...entities import CollusionRing, PlayerRelationship, utcnow
from .graph import GraphSnapshot, InteractionEdge, PlayerInteractionGraph
from .scoring import (
    ChipFlowAnalyzer,
    ChipFlowSummary,
    DefaultSoftPlayScorer,
    SoftPlayScorer,
    soft_play_features,
)

logger = logging.getLogger(__name__)

COMMUNITY_LOUVAIN = "louvain"
COMMUNITY_BFS = "bfs"


class EvidenceItem(BaseModel):
    type: str
    description: str
    value: float
    threshold: float
    severity: str


class CollusionResult(BaseModel):
    player_a: str
    player_b: str
    is_collusion: bool = False
    score: float = 0.0
    confidence: float = 0.0
    collusion_type: str = "none"
    component_scores: Dict[str, float] = Field(default_factory=dict)
    evidence: List[EvidenceItem] = Field(default_factory=list)
    recommended_action: str = "clear"
    hands_analyzed: int = 0


class EvidencePacket(BaseModel):
    """Everything a reviewer needs to judge a ring"""
    ring: CollusionRing
    graph: GraphSnapshot
    chip_flows: Dict[str, ChipFlowSummary] = Field(default_factory=dict)
    model_factors: Dict[str, float] = Field(default_factory=dict)
    recommendations: List[str] = Field(default_factory=list)
    generated_at: datetime


class CollusionDetector:
    """Pairwise and ring-level collusion analysis"""

    def __init__(
        self,
        graph: Optional[PlayerInteractionGraph] = None,
        config: Optional[CollusionDetectionConfig] = None,
        soft_play_scorer: Optional[SoftPlayScorer] = None,
        chip_flow_analyzer: Optional[ChipFlowAnalyzer] = None,
    ):
        self.config = config or CollusionDetectionConfig()
        self.graph = graph or PlayerInteractionGraph()
        self.soft_play_scorer = soft_play_scorer or DefaultSoftPlayScorer(self.config)
        self.chip_flow_analyzer = chip_flow_analyzer or ChipFlowAnalyzer(self.config)

    # ------------------------------------------------------------------
    # Pair scoring
    # ------------------------------------------------------------------

    async def detect_collusion(
        self, player_a: str, player_b: str, now: Optional[datetime] = None
    ) -> CollusionResult:
        edge = await self.graph.get_edge(player_a, player_b)
        if edge is None:
            a, b = sorted((player_a, player_b))
            return CollusionResult(player_a=a, player_b=b)
        return await self.score_edge(edge, now or utcnow())

    async def detect_from_relationship(
        self, relationship: PlayerRelationship, now: Optional[datetime] = None
    ) -> CollusionResult:
        """Score a summarized relationship without touching the graph"""
        if relationship.co_occurrence_count < self.config.min_relationship_hands:
            a, b = sorted((relationship.player_a, relationship.player_b))
            return CollusionResult(player_a=a, player_b=b, hands_analyzed=relationship.co_occurrence_count)

        edge = self.edge_from_relationship(relationship)
        return await self.score_edge(edge, now or utcnow())

    @staticmethod
    def edge_from_relationship(relationship: PlayerRelationship) -> InteractionEdge:
        rel = relationship
        ev_loss = max(0.0, 0.5 - rel.win_rate_a) if rel.win_rate_a > 0 else 0.0
        transferred = rel.avg_pot_size * rel.mutual_wins

        a_losing = rel.win_rate_a < rel.win_rate_b
        return InteractionEdge(
            player_a=rel.player_a,
            player_b=rel.player_b,
            co_occurrences=rel.co_occurrence_count,
            transfer_count=rel.mutual_wins,
            ip_matches=rel.ip_match_count,
            device_matches=rel.device_match_count,
            behavior_samples=1,
            ev_loss_total=ev_loss,
            chips_a_to_b=transferred if a_losing else 0.0,
            chips_b_to_a=0.0 if a_losing else transferred,
            weight=rel.co_occurrence_count / 100.0,
            first_interaction=rel.first_seen,
            last_interaction=rel.last_seen,
        )

    def network_score(self, edge: InteractionEdge) -> float:
        cfg = self.config
        total = cfg.ip_weight + cfg.device_weight + cfg.network_weight
        weighted = (
            min(1.0, edge.ip_matches / cfg.ip_match_threshold) * cfg.ip_weight
            + min(1.0, edge.device_matches / cfg.device_match_threshold) * cfg.device_weight
            + min(1.0, edge.network_matches / cfg.network_match_threshold) * cfg.network_weight
        )
        return weighted / total if total > 0 else 0.0

    def component_weights(self) -> Dict[str, float]:
        cfg = self.config
        return {
            "co_occurrence": cfg.co_occurrence_weight,
            "seating": cfg.seating_weight,
            "stake": cfg.stake_weight,
            "arrival": cfg.arrival_weight,
            "soft_play": cfg.aggression_weight + cfg.pot_weight + cfg.showdown_weight,
            "chip_flow": cfg.chip_transfer_weight + cfg.ev_loss_weight,
            "network": cfg.ip_weight + cfg.device_weight + cfg.network_weight,
        }

    async def score_edge(self, edge: InteractionEdge, now: datetime) -> CollusionResult:
        cfg = self.config

        chip_flow = await self.chip_flow_analyzer.analyze(edge, now)
        components = {
            "co_occurrence": min(1.0, edge.co_occurrences / cfg.co_occurrence_threshold),
            "seating": min(1.0, edge.seating_adjacency / cfg.seating_pattern_threshold),
            "stake": min(1.0, edge.stake_overlap / cfg.stake_overlap_threshold),
            "arrival": min(1.0, (edge.arrival_syncs + edge.departure_syncs) * 0.1),
            "soft_play": min(1.0, max(0.0, self.soft_play_scorer.score(soft_play_features(edge)))),
            "chip_flow": chip_flow.score,
            "network": self.network_score(edge),
        }

        weights = self.component_weights()
        total_weight = sum(weights.values())
        score = sum(components[name] * weights[name] for name in weights) / total_weight
        score = min(1.0, max(0.0, score))

        evidence = self._evidence(edge, chip_flow)
        result = CollusionResult(
            player_a=edge.player_a,
            player_b=edge.player_b,
            is_collusion=score >= cfg.collusion_threshold,
            score=score,
            confidence=self._confidence(edge, evidence, components["network"]),
            collusion_type=self._collusion_type(components),
            component_scores=components,
            evidence=evidence,
            recommended_action=self._action(score),
            hands_analyzed=edge.co_occurrences,
        )

        if result.recommended_action != "clear":
            logger.info(
                f"🎯 Collusion check {edge.key}: score={score:.2f} "
                f"type={result.collusion_type} action={result.recommended_action}"
            )
        return result

    def _collusion_type(self, components: Dict[str, float]) -> str:
        soft = components["soft_play"]
        chip = components["chip_flow"]
        network = components["network"]

        collusion_type = "chip_dumping" if chip > soft else "soft_play"
        if network > max(soft, chip) and network > 0.5:
            collusion_type = "information_sharing"
        if soft > 0.5 and chip > 0.4:
            collusion_type = "squeeze_ring"
        return collusion_type

    def _action(self, score: float) -> str:
        cfg = self.config
        if score >= cfg.critical_threshold:
            return "immediate_action"
        if score >= cfg.collusion_threshold:
            return "flag_review"
        if score >= cfg.review_threshold:
            return "monitor"
        return "clear"

    def _evidence(self, edge: InteractionEdge, chip_flow: ChipFlowSummary) -> List[EvidenceItem]:
        cfg = self.config
        items = []

        if edge.co_occurrences >= cfg.co_occurrence_threshold:
            items.append(EvidenceItem(
                type="co_occurrence",
                description=f"Played together in {edge.co_occurrences} hands",
                value=edge.co_occurrences,
                threshold=cfg.co_occurrence_threshold,
                severity=SEVERITY_MEDIUM,
            ))
        if edge.seating_adjacency >= cfg.seating_pattern_threshold:
            items.append(EvidenceItem(
                type="seating_adjacency",
                description=f"Seated adjacent {edge.seating_adjacency} times",
                value=edge.seating_adjacency,
                threshold=cfg.seating_pattern_threshold,
                severity=SEVERITY_MEDIUM,
            ))
        if edge.aggression_delta > cfg.aggression_delta_threshold:
            items.append(EvidenceItem(
                type="aggression_delta",
                description=f"Aggression drops {edge.aggression_delta * 100:.0f}% when facing each other",
                value=edge.aggression_delta,
                threshold=cfg.aggression_delta_threshold,
                severity=SEVERITY_HIGH,
            ))
        if edge.check_down_rate > cfg.check_down_rate_threshold:
            items.append(EvidenceItem(
                type="check_down",
                description=f"{edge.check_down_rate * 100:.0f}% check-down rate in heads-up pots",
                value=edge.check_down_rate,
                threshold=cfg.check_down_rate_threshold,
                severity=SEVERITY_HIGH,
            ))
        if chip_flow.net_transfer != 0:
            source, target = (
                (edge.player_a, edge.player_b) if chip_flow.net_transfer > 0
                else (edge.player_b, edge.player_a)
            )
            items.append(EvidenceItem(
                type="chip_transfer",
                description=f"Net chip transfer: {abs(chip_flow.net_transfer):.0f} from {source} to {target}",
                value=abs(chip_flow.net_transfer),
                threshold=cfg.chip_transfer_threshold,
                severity=SEVERITY_HIGH,
            ))
        if chip_flow.ev_loss_rate > cfg.ev_loss_threshold:
            items.append(EvidenceItem(
                type="ev_loss",
                description=f"Consistent EV loss rate: {chip_flow.ev_loss_rate * 100:.1f}%",
                value=chip_flow.ev_loss_rate,
                threshold=cfg.ev_loss_threshold,
                severity=SEVERITY_HIGH,
            ))
        if edge.ip_matches >= cfg.ip_match_threshold:
            items.append(EvidenceItem(
                type="ip_match",
                description=f"Same IP address used {edge.ip_matches} times",
                value=edge.ip_matches,
                threshold=cfg.ip_match_threshold,
                severity=SEVERITY_MEDIUM,
            ))
        if edge.device_matches >= cfg.device_match_threshold:
            items.append(EvidenceItem(
                type="device_match",
                description=f"Same device used {edge.device_matches} times",
                value=edge.device_matches,
                threshold=cfg.device_match_threshold,
                severity=SEVERITY_CRITICAL,
            ))

        return sorted(items, key=lambda item: SEVERITY_ORDER.get(item.severity, len(SEVERITY_ORDER)))

    @staticmethod
    def _confidence(edge: InteractionEdge, evidence: List[EvidenceItem], network: float) -> float:
        confidence = 0.0

        if edge.co_occurrences >= 100:
            confidence += 0.3
        elif edge.co_occurrences >= 50:
            confidence += 0.2
        elif edge.co_occurrences >= 20:
            confidence += 0.1

        if len(evidence) >= 5:
            confidence += 0.3
        elif len(evidence) >= 3:
            confidence += 0.2
        elif len(evidence) >= 1:
            confidence += 0.1

        if network > 0.3:
            confidence += 0.2

        return min(1.0, confidence)

    # ------------------------------------------------------------------
    # Rings
    # ------------------------------------------------------------------

    async def find_collusion_rings(
        self, min_confidence: float = 0.0, method: Optional[str] = None
    ) -> List[CollusionRing]:
        """
        Dense communities of strongly connected players

        Args:
            min_confidence: rings below this confidence are dropped
            method: "louvain" (modularity communities) or "bfs" (strong-edge components)
        """
        method = method or self.config.community_method
        graph = await self.graph.snapshot()
        if graph.number_of_edges() == 0:
            return []

        if method == COMMUNITY_LOUVAIN:
            communities = await asyncio.to_thread(
                nx.community.louvain_communities,
                graph,
                weight="weight",
                seed=self.config.random_seed,
            )
        elif method == COMMUNITY_BFS:
            communities = await self._strong_components(graph)
        else:
            raise ValueError(f"unknown community method: {method}")

        rings = []
        for members in sorted((sorted(c) for c in communities if len(c) >= 2)):
            ring = self._evaluate_community(graph, members)
            if ring is None:
                continue
            rings.append(ring)

        for index, ring in enumerate(rings):
            ring.ring_id = f"ring_{index}"

        found = [ring for ring in rings if ring.confidence >= min_confidence]
        if found:
            logger.info(f"🕸️ Found {len(found)} collusion rings ({method})")
        return found

    def _is_strong(self, data: dict) -> bool:
        return data.get("weight", 0.0) > self.config.ring_edge_weight_threshold

    async def _strong_components(self, graph: nx.Graph) -> List[set]:
        """Connected components over strong edges, yielding to the loop between nodes"""
        visited = set()
        components = []

        for start in graph.nodes:
            if start in visited:
                continue
            component = set()
            queue = [start]
            visited.add(start)
            while queue:
                node = queue.pop(0)
                component.add(node)
                for neighbor, data in graph[node].items():
                    if neighbor not in visited and self._is_strong(data):
                        visited.add(neighbor)
                        queue.append(neighbor)
                await asyncio.sleep(0)
            components.append(component)

        return components

    def _evaluate_community(self, graph: nx.Graph, members: List[str]) -> Optional[CollusionRing]:
        cfg = self.config
        sub = graph.subgraph(members)

        strong_edges = sum(1 for _, _, data in sub.edges(data=True) if self._is_strong(data))
        total_hands = sum(int(data.get("co_occurrences", 0)) for _, _, data in sub.edges(data=True))

        n = len(members)
        possible = n * (n - 1) / 2
        density = strong_edges / possible if possible else 0.0

        if density <= cfg.ring_min_density or total_hands < cfg.ring_min_hands:
            return None

        confidence = density + (0.1 if n >= 4 else 0.0)
        return CollusionRing(
            ring_id="",
            members=members,
            density=density,
            total_hands=total_hands,
            confidence=min(1.0, confidence),
            collusion_type="multi_player_ring",
        )

    # ------------------------------------------------------------------
    # Evidence packets
    # ------------------------------------------------------------------

    async def generate_evidence_packet(
        self, ring: CollusionRing, now: Optional[datetime] = None
    ) -> EvidencePacket:
        now = now or utcnow()
        snapshot = await self.graph.subgraph_snapshot(ring.members, now)

        chip_flows: Dict[str, ChipFlowSummary] = {}
        factor_totals: Dict[str, float] = {}
        for edge in snapshot.edges:
            result = await self.score_edge(edge, now)
            chip_flows[edge.key] = await self.chip_flow_analyzer.analyze(edge, now)
            for name, value in result.component_scores.items():
                factor_totals[name] = factor_totals.get(name, 0.0) + value

        model_factors = {
            name: total / len(snapshot.edges) for name, total in factor_totals.items()
        } if snapshot.edges else {}

        return EvidencePacket(
            ring=ring,
            graph=snapshot,
            chip_flows=chip_flows,
            model_factors=model_factors,
            recommendations=self._ring_recommendations(ring, chip_flows),
            generated_at=now,
        )

    def _ring_recommendations(self, ring: CollusionRing, chip_flows: Dict[str, ChipFlowSummary]) -> List[str]:
        cfg = self.config
        recommendations = []
        if ring.confidence >= cfg.critical_threshold:
            recommendations.append("Suspend ring members pending investigation")
        elif ring.confidence >= cfg.collusion_threshold:
            recommendations.append("Escalate ring for manual review")
        else:
            recommendations.append("Monitor ring members")

        if any(flow.score > 0 for flow in chip_flows.values()):
            recommendations.append("Review chip transfers between ring members")
        if len(ring.members) >= 4:
            recommendations.append("Check ring members for shared devices and networks")
        return recommendations
