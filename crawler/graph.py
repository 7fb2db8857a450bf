"""Link graph assembled during a crawl and resolved to Screen ids afterwards."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple

from utils.helpers import base_path


@dataclass
class ResolvedGraph:
    """Edges keyed by Screen id, after the drop-if-unresolved filter."""

    edges: List[Tuple[str, str]] = field(default_factory=list)
    dangling: int = 0
    self_loops: int = 0
    duplicates: int = 0

    @property
    def adjacency(self) -> Dict[str, List[str]]:
        out: Dict[str, List[str]] = {}
        for source, dest in self.edges:
            out.setdefault(source, []).append(dest)
        return out


class LinkGraph:
    """
    Raw ``(source_path, dest_path)`` edges recorded while walking.

    Paths are only mapped to Screen ids once the walk is over, because a
    destination usually gets its Screen after the edge pointing at it was
    seen.
    """

    def __init__(self) -> None:
        self._raw: List[Tuple[str, str]] = []

    def __len__(self) -> int:
        return len(self._raw)

    def add_link(self, source_path: str, dest_path: str) -> None:
        self._raw.append((source_path, dest_path))

    @staticmethod
    def _lookup(path: str, path_to_id: Mapping[str, str]) -> Optional[str]:
        return path_to_id.get(path) or path_to_id.get(base_path(path))

    def resolve(self, path_to_id: Mapping[str, str]) -> ResolvedGraph:
        """
        Map every raw edge to Screen ids.

        Edges with an unresolved end are dropped, as are self-loops and
        repeated ``(source, dest)`` pairs.
        """
        resolved = ResolvedGraph()
        seen = set()
        for source_path, dest_path in self._raw:
            source_id = self._lookup(source_path, path_to_id)
            dest_id = self._lookup(dest_path, path_to_id)
            if not source_id or not dest_id:
                resolved.dangling += 1
                continue
            if source_id == dest_id:
                resolved.self_loops += 1
                continue
            if (source_id, dest_id) in seen:
                resolved.duplicates += 1
                continue
            seen.add((source_id, dest_id))
            resolved.edges.append((source_id, dest_id))
        return resolved
