"""
Player interaction graph
Undirected weighted edges keyed by the sorted player pair
"""
import json
import logging
from datetime import datetime
from itertools import combinations
from typing import Dict, List, Optional

import networkx as nx
from pydantic import BaseModel

from ...entities import HandHistory
from ...locks import AsyncRWLock

logger = logging.getLogger(__name__)

COUNTER_FIELDS = [
    "co_occurrences",
    "seating_adjacency",
    "arrival_syncs",
    "departure_syncs",
    "transfer_count",
    "ip_matches",
    "device_matches",
    "network_matches",
    "behavior_samples",
]

TOTAL_FIELDS = [
    "aggression_delta_total",
    "pot_size_delta_total",
    "showdown_delta_total",
    "check_down_total",
    "vpip_delta_total",
    "pfr_delta_total",
    "three_bet_delta_total",
    "stake_overlap_total",
    "ev_loss_total",
    "chips_a_to_b",
    "chips_b_to_a",
    "weight",
]


def edge_key(player_a: str, player_b: str) -> str:
    a, b = sorted((player_a, player_b))
    return f"{a}:{b}"


class InteractionEdge(BaseModel):
    """
    Accumulated evidence between two players
    player_a < player_b always; every field merges by addition
    """
    player_a: str
    player_b: str

    co_occurrences: int = 0
    seating_adjacency: int = 0
    arrival_syncs: int = 0
    departure_syncs: int = 0
    transfer_count: int = 0
    ip_matches: int = 0
    device_matches: int = 0
    network_matches: int = 0
    behavior_samples: int = 0

    aggression_delta_total: float = 0.0
    pot_size_delta_total: float = 0.0
    showdown_delta_total: float = 0.0
    check_down_total: float = 0.0
    vpip_delta_total: float = 0.0
    pfr_delta_total: float = 0.0
    three_bet_delta_total: float = 0.0
    stake_overlap_total: float = 0.0
    ev_loss_total: float = 0.0

    chips_a_to_b: float = 0.0
    chips_b_to_a: float = 0.0
    weight: float = 0.0

    first_interaction: Optional[datetime] = None
    last_interaction: Optional[datetime] = None

    def model_post_init(self, __context):
        if self.player_a > self.player_b:
            self.player_a, self.player_b = self.player_b, self.player_a
            self.chips_a_to_b, self.chips_b_to_a = self.chips_b_to_a, self.chips_a_to_b

    @property
    def key(self) -> str:
        return edge_key(self.player_a, self.player_b)

    def _mean(self, total: float) -> float:
        if self.behavior_samples <= 0:
            return 0.0
        return total / self.behavior_samples

    @property
    def aggression_delta(self) -> float:
        return self._mean(self.aggression_delta_total)

    @property
    def pot_size_delta(self) -> float:
        return self._mean(self.pot_size_delta_total)

    @property
    def showdown_delta(self) -> float:
        return self._mean(self.showdown_delta_total)

    @property
    def check_down_rate(self) -> float:
        return self._mean(self.check_down_total)

    @property
    def vpip_delta(self) -> float:
        return self._mean(self.vpip_delta_total)

    @property
    def pfr_delta(self) -> float:
        return self._mean(self.pfr_delta_total)

    @property
    def three_bet_delta(self) -> float:
        return self._mean(self.three_bet_delta_total)

    @property
    def stake_overlap(self) -> float:
        return self._mean(self.stake_overlap_total)

    @property
    def ev_loss_rate(self) -> float:
        return self._mean(self.ev_loss_total)

    @property
    def net_chip_transfer(self) -> float:
        """Positive when chips flow from player_a to player_b"""
        return self.chips_a_to_b - self.chips_b_to_a

    def merge(self, other: "InteractionEdge") -> "InteractionEdge":
        if other.key != self.key:
            raise ValueError(f"cannot merge edge {other.key} into {self.key}")

        values = {"player_a": self.player_a, "player_b": self.player_b}
        for field in COUNTER_FIELDS + TOTAL_FIELDS:
            values[field] = getattr(self, field) + getattr(other, field)

        firsts = [t for t in (self.first_interaction, other.first_interaction) if t is not None]
        lasts = [t for t in (self.last_interaction, other.last_interaction) if t is not None]
        values["first_interaction"] = min(firsts) if firsts else None
        values["last_interaction"] = max(lasts) if lasts else None
        return InteractionEdge(**values)


class GraphSnapshot(BaseModel):
    """Serializable view of part of the graph"""
    nodes: List[str]
    edges: List[InteractionEdge]
    degree: Dict[str, int]
    weighted_degree: Dict[str, float]
    taken_at: datetime


class PlayerInteractionGraph:
    """Concurrent-safe store of interaction edges"""

    def __init__(self):
        self._edges: Dict[str, InteractionEdge] = {}
        self._adjacency: Dict[str, set] = {}
        self._lock = AsyncRWLock()

    async def add_interaction_edge(self, edge: InteractionEdge):
        """Merge an observation into the graph"""
        async with self._lock.write():
            existing = self._edges.get(edge.key)
            self._edges[edge.key] = existing.merge(edge) if existing else edge.model_copy()
            self._adjacency.setdefault(edge.player_a, set()).add(edge.player_b)
            self._adjacency.setdefault(edge.player_b, set()).add(edge.player_a)

    async def get_edge(self, player_a: str, player_b: str) -> Optional[InteractionEdge]:
        async with self._lock.read():
            edge = self._edges.get(edge_key(player_a, player_b))
        return edge.model_copy() if edge else None

    async def neighbors(self, player_id: str) -> List[str]:
        async with self._lock.read():
            return sorted(self._adjacency.get(player_id, ()))

    async def edge_count(self) -> int:
        async with self._lock.read():
            return len(self._edges)

    async def edges(self) -> List[InteractionEdge]:
        async with self._lock.read():
            return [e.model_copy() for e in self._edges.values()]

    async def snapshot(self) -> nx.Graph:
        """networkx copy taken under the read lock"""
        async with self._lock.read():
            edges = [e.model_copy() for e in self._edges.values()]

        graph = nx.Graph()
        for edge in edges:
            graph.add_edge(
                edge.player_a,
                edge.player_b,
                weight=edge.weight,
                co_occurrences=edge.co_occurrences,
                edge=edge,
            )
        return graph

    async def subgraph_snapshot(self, members: List[str], taken_at: datetime) -> GraphSnapshot:
        graph = await self.snapshot()
        sub = graph.subgraph([m for m in members if m in graph])
        return GraphSnapshot(
            nodes=sorted(members),
            edges=[data["edge"] for _, _, data in sub.edges(data=True)],
            degree={m: int(sub.degree(m)) if m in sub else 0 for m in members},
            weighted_degree={
                m: float(sub.degree(m, weight="weight")) if m in sub else 0.0 for m in members
            },
            taken_at=taken_at,
        )

    async def to_json(self) -> str:
        async with self._lock.read():
            payload = {
                "nodes": sorted(self._adjacency),
                "edges": [e.model_dump(mode="json") for e in self._edges.values()],
            }
        return json.dumps(payload)

    @staticmethod
    def edges_from_hand(hand: HandHistory, weight: float = 0.01) -> List[InteractionEdge]:
        """
        Co-occurrence edges for every pair of participants
        Neighbouring seats also count as a seating adjacency
        """
        edges = []
        players = sorted(set(hand.participant_ids))
        seats = hand.seat_positions

        for a, b in combinations(players, 2):
            adjacent = (
                a in seats and b in seats and abs(seats[a] - seats[b]) == 1
            )
            edges.append(InteractionEdge(
                player_a=a,
                player_b=b,
                co_occurrences=1,
                seating_adjacency=1 if adjacent else 0,
                weight=weight,
                first_interaction=hand.completed_at,
                last_interaction=hand.completed_at,
            ))
        return edges
