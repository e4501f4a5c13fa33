from __future__ import annotations

import logging
from collections import deque
from typing import Iterable, Sequence

from backend.app.models.graph import Connection, Instrument
from backend.app.models.studio import CycleReport

logger = logging.getLogger(__name__)


class LoopService:
    """Feedback-loop detection over the instrument routing graph.

    ``detect`` reports the first cycle met by a depth-first search in
    declaration order and honors the local-off flag of every instrument on
    that cycle. ``would_create_cycle`` is the connection-time pre-check and
    deliberately ignores local-off.
    """

    def detect(self, instruments: Sequence[Instrument], connections: Iterable[Connection]) -> CycleReport:
        instrument_map = {instrument.id: instrument for instrument in instruments}
        adjacency: dict[str, list[tuple[str, str]]] = {instrument.id: [] for instrument in instruments}
        for connection in connections:
            if connection.source not in adjacency or connection.target not in adjacency:
                continue
            adjacency[connection.source].append((connection.target, connection.id))

        visited: set[str] = set()
        for instrument in instruments:
            if instrument.id in visited:
                continue
            found = self._search(instrument.id, adjacency, visited)
            if found is None:
                continue

            cycle_nodes, cycle_edges = found
            local_off = [node_id for node_id in cycle_nodes if instrument_map[node_id].local_off]
            if local_off:
                logger.debug("Feedback loop through %s is broken by local off on %s", cycle_nodes, local_off)
                return CycleReport()

            logger.debug("Feedback loop detected through connections %s", cycle_edges)
            return CycleReport(has_cycle=True, cycle_connections=cycle_edges)

        return CycleReport()

    @staticmethod
    def _search(
        root_id: str,
        adjacency: dict[str, list[tuple[str, str]]],
        visited: set[str],
    ) -> tuple[list[str], list[str]] | None:
        parent_edge: dict[str, str] = {}
        parent_node: dict[str, str] = {}
        on_stack: set[str] = {root_id}
        stack: list[tuple[str, int]] = [(root_id, 0)]
        visited.add(root_id)

        while stack:
            node_id, index = stack[-1]
            neighbors = adjacency[node_id]
            if index >= len(neighbors):
                stack.pop()
                on_stack.discard(node_id)
                continue

            stack[-1] = (node_id, index + 1)
            neighbor_id, edge_id = neighbors[index]

            if neighbor_id not in visited:
                visited.add(neighbor_id)
                on_stack.add(neighbor_id)
                parent_edge[neighbor_id] = edge_id
                parent_node[neighbor_id] = node_id
                stack.append((neighbor_id, 0))
                continue

            if neighbor_id not in on_stack:
                continue

            # Back-edge: walk the parent chain from node_id up to the ancestor.
            cycle_edges = [edge_id]
            cycle_nodes = [node_id]
            current = node_id
            while current != neighbor_id:
                cycle_edges.append(parent_edge[current])
                current = parent_node[current]
                cycle_nodes.append(current)
            if cycle_nodes[-1] != neighbor_id:
                cycle_nodes.append(neighbor_id)
            return cycle_nodes, cycle_edges

        return None

    @staticmethod
    def would_create_cycle(connections: Iterable[Connection], source: str, target: str) -> bool:
        adjacency: dict[str, list[str]] = {}
        for connection in connections:
            adjacency.setdefault(connection.source, []).append(connection.target)

        visited: set[str] = set()
        queue = deque([target])
        while queue:
            current = queue.popleft()
            if current == source:
                return True
            if current in visited:
                continue
            visited.add(current)
            for neighbor in adjacency.get(current, []):
                if neighbor not in visited:
                    queue.append(neighbor)

        return False
