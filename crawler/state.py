"""Per-run crawl state. One instance per crawl, discarded at the end."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, List, Optional, Set

from crawler.graph import LinkGraph
from models.mirror import Product
from utils.helpers import base_path


@dataclass
class CrawlState:
    """Mutable state carried through every step of a crawl run."""

    product: Product

    # Exact paths already dequeued for processing
    visited: Set[str] = field(default_factory=set)
    # Paths without query string already processed
    visited_base_paths: Set[str] = field(default_factory=set)
    # FIFO of paths waiting to be processed (may hold repeats)
    discovered: Deque[str] = field(default_factory=deque)

    path_to_route_id: Dict[str, str] = field(default_factory=dict)
    graph: LinkGraph = field(default_factory=LinkGraph)

    skipped_paths: List[str] = field(default_factory=list)
    failed_paths: List[str] = field(default_factory=list)

    def enqueue(self, path: str) -> bool:
        if path in self.visited:
            return False
        self.discovered.append(path)
        return True

    def next_path(self) -> Optional[str]:
        return self.discovered.popleft() if self.discovered else None

    def mark_visited(self, path: str) -> bool:
        """Claim ``path`` for processing. False if it was already processed."""
        if path in self.visited:
            return False
        self.visited.add(path)
        return True

    def claim_base_path(self, path: str) -> bool:
        """False when the same path under another query string was already processed."""
        key = base_path(path)
        if key in self.visited_base_paths:
            return False
        self.visited_base_paths.add(key)
        return True

    def register_route(self, path: str, route_id: str) -> None:
        self.path_to_route_id[path] = route_id
        self.path_to_route_id[base_path(path)] = route_id
