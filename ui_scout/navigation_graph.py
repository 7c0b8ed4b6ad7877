from __future__ import annotations

"""Navigation graph of discovered screens and the transitions between them.

Nodes are keyed by screen fingerprint. Transitions are kept in an append-only list,
which is the single source of truth; the networkx `MultiDiGraph` held alongside it is
only an adjacency index (outgoing / incoming lookups, reachability, Dijkstra) and is
rebuilt from the edge list on load rather than persisted.
"""

import json
import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Set

import networkx as nx

from .errors import PersistenceError
from .knowledge import Action, ScreenNode, Transition, utcnow

logger = logging.getLogger(__name__)


@dataclass
class CoverageStats:
    total_screens: int
    explored_screens: int
    coverage_percentage: float
    total_edges: int
    average_depth: float

    def to_json(self) -> Dict[str, Any]:
        return asdict(self)


class NavigationGraph:
    """Single-writer aggregate of screens and transitions."""

    def __init__(self) -> None:
        self.nodes: Dict[str, ScreenNode] = {}
        self.edges: List[Transition] = []
        self.start_node: Optional[str] = None
        self.current_node: Optional[str] = None
        self._index: nx.MultiDiGraph = nx.MultiDiGraph()

    # --- mutation ---------------------------------------------------------
    def add_node(self, node: ScreenNode) -> bool:
        """Insert `node`, or count a revisit if its fingerprint is already known.

        Returns True only for a first discovery. The element snapshot captured on
        first discovery is never replaced.
        """
        existing = self.nodes.get(node.fingerprint)
        if existing is not None:
            existing.visit_count += 1
            existing.last_visited = utcnow()
            return False

        self.nodes[node.fingerprint] = node
        self._index.add_node(node.fingerprint)
        if self.start_node is None:
            self.start_node = node.fingerprint
        return True

    def add_transition(self, from_fp: str, to_fp: str, action: Action, duration: float) -> Transition:
        """Append an edge and move `current_node` to its destination.

        Endpoints are not validated; add the nodes first if queries should see them.
        """
        edge = Transition(from_fingerprint=from_fp, to_fingerprint=to_fp, action=action, duration=duration)
        self.edges.append(edge)
        self._index_edge(edge)
        self.current_node = to_fp
        return edge

    def _index_edge(self, edge: Transition) -> None:
        self._index.add_edge(
            edge.from_fingerprint,
            edge.to_fingerprint,
            key=edge.edge_id,
            duration=edge.duration,
            obj=edge,
        )

    def _rebuild_index(self) -> None:
        self._index = nx.MultiDiGraph()
        self._index.add_nodes_from(self.nodes)
        for edge in self.edges:
            self._index_edge(edge)

    # --- queries ----------------------------------------------------------
    def get_node(self, fingerprint: str) -> Optional[ScreenNode]:
        return self.nodes.get(fingerprint)

    def outgoing(self, fingerprint: str) -> List[Transition]:
        if fingerprint not in self._index:
            return []
        return [data["obj"] for _, _, data in self._index.out_edges(fingerprint, data=True)]

    def incoming(self, fingerprint: str) -> List[Transition]:
        if fingerprint not in self._index:
            return []
        return [data["obj"] for _, _, data in self._index.in_edges(fingerprint, data=True)]

    def has_visited(self, fingerprint: str) -> bool:
        return fingerprint in self.nodes

    def visit_count(self, fingerprint: str) -> int:
        node = self.nodes.get(fingerprint)
        return node.visit_count if node else 0

    # --- cycles -----------------------------------------------------------
    def would_create_cycle(self, from_fp: str, to_fp: str) -> bool:
        """True iff `to_fp` can already reach `from_fp`, i.e. adding from→to closes a loop."""
        if from_fp == to_fp:
            return True
        if to_fp not in self._index or from_fp not in self._index:
            return False
        return nx.has_path(self._index, to_fp, from_fp)

    def find_cycles(self) -> List[List[str]]:
        """Depth-first cycle search started from every not-yet-visited node.

        The same structural cycle may be reported more than once (different entry
        points, parallel edges). Use `unique_cycles()` for a deduplicated view.
        """
        cycles: List[List[str]] = []
        visited: Set[str] = set()
        on_stack: Set[str] = set()

        def dfs(node_id: str, path: List[str]) -> None:
            if node_id in on_stack:
                start = path.index(node_id)
                cycles.append(path[start:])
                return
            if node_id in visited:
                return
            visited.add(node_id)
            on_stack.add(node_id)
            path = path + [node_id]
            for _, dst in self._index.out_edges(node_id):
                dfs(dst, path)
            on_stack.discard(node_id)

        for node_id in list(self.nodes):
            if node_id not in visited:
                dfs(node_id, [])
        return cycles

    def unique_cycles(self) -> List[List[str]]:
        """`find_cycles()` with rotations of the same cycle collapsed into one entry."""
        seen: Set[tuple] = set()
        unique: List[List[str]] = []
        for cycle in self.find_cycles():
            pivot = cycle.index(min(cycle))
            canonical = tuple(cycle[pivot:] + cycle[:pivot])
            if canonical not in seen:
                seen.add(canonical)
                unique.append(list(canonical))
        return unique

    # --- paths ------------------------------------------------------------
    def shortest_path(self, from_fp: str, to_fp: str) -> Optional[List[Action]]:
        """Fastest observed route between two screens.

        Edge weights are transition durations, so "shortest" means least total
        observed time rather than fewest hops. Returns None when `to_fp` is
        unreachable and an empty list when both ends are the same known screen.
        """
        if from_fp not in self._index or to_fp not in self._index:
            return None
        if from_fp == to_fp:
            return []
        try:
            node_path = nx.dijkstra_path(self._index, from_fp, to_fp, weight="duration")
        except nx.NetworkXNoPath:
            return None

        actions: List[Action] = []
        for src, dst in zip(node_path, node_path[1:]):
            # several edges may connect the pair; take the fastest one
            parallel = self._index.get_edge_data(src, dst)
            best = min(parallel.values(), key=lambda data: data["duration"])
            actions.append(best["obj"].action)
        return actions

    # --- statistics -------------------------------------------------------
    def coverage_stats(self) -> CoverageStats:
        """Coverage summary.

        `explored_screens` counts nodes with at least one visit. Every node is
        created with one visit, so the percentage is 100 whenever the graph is
        non-empty; the figure is kept as-is for compatibility with saved reports.
        """
        total = len(self.nodes)
        explored = sum(1 for n in self.nodes.values() if n.visit_count > 0)
        average_depth = sum(n.depth for n in self.nodes.values()) / total if total else 0.0
        return CoverageStats(
            total_screens=total,
            explored_screens=explored,
            coverage_percentage=(explored / total) * 100 if total else 0.0,
            total_edges=len(self.edges),
            average_depth=average_depth,
        )

    # --- export -----------------------------------------------------------
    def export_mermaid(self) -> str:
        lines = ["graph TD"]
        for edge in self.edges:
            src = self.nodes.get(edge.from_fingerprint)
            dst = self.nodes.get(edge.to_fingerprint)
            if src is None or dst is None:
                continue
            src_label = src.screen_type.value if src.screen_type else "Screen"
            dst_label = dst.screen_type.value if dst.screen_type else "Screen"
            action_label = edge.action.type.value
            if edge.action.target_element:
                action_label += f": {edge.action.target_element}"
            lines.append(
                f"    {edge.from_fingerprint[:6]}[{src_label}] -->|{action_label}| "
                f"{edge.to_fingerprint[:6]}[{dst_label}]"
            )
        return "\n".join(lines) + "\n"

    def to_networkx(self) -> nx.MultiDiGraph:
        """Return a copy of the index stripped of Python objects (safe for GraphML)."""
        g = nx.MultiDiGraph()
        for fp, node in self.nodes.items():
            g.add_node(
                fp,
                screen_type=node.screen_type.value if node.screen_type else "",
                visit_count=node.visit_count,
                depth=node.depth,
            )
        for edge in self.edges:
            g.add_edge(
                edge.from_fingerprint,
                edge.to_fingerprint,
                key=edge.edge_id,
                action=edge.action.type.value,
                target=edge.action.target_element or "",
                duration=edge.duration,
            )
        return g

    def write_graphml(self, path: str) -> None:
        nx.write_graphml(self.to_networkx(), path)

    # --- persistence ------------------------------------------------------
    def to_json(self) -> Dict[str, Any]:
        # adjacency is derived from edges and deliberately not stored
        return {
            "nodes": {fp: node.to_json() for fp, node in self.nodes.items()},
            "edges": [edge.to_json() for edge in self.edges],
            "startNode": self.start_node,
            "currentNode": self.current_node,
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "NavigationGraph":
        graph = cls()
        graph.nodes = {fp: ScreenNode.from_json(meta) for fp, meta in data.get("nodes", {}).items()}
        graph.edges = [Transition.from_json(e) for e in data.get("edges", [])]
        graph.start_node = data.get("startNode")
        graph.current_node = data.get("currentNode")
        graph._rebuild_index()
        return graph

    def save(self, path: str) -> None:
        try:
            with open(path, "w", encoding="utf-8") as fh:
                json.dump(self.to_json(), fh, indent=2)
        except (OSError, TypeError, ValueError) as exc:
            raise PersistenceError(f"Could not save navigation graph to {path}: {exc}") from exc

    @classmethod
    def load(cls, path: str) -> "NavigationGraph":
        try:
            with open(path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError) as exc:
            raise PersistenceError(f"Could not load navigation graph from {path}: {exc}") from exc
        return cls.from_json(data)
