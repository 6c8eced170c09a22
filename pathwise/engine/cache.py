from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass

from ..rules.models import PublishedRule
from ..rules.store import RuleStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DomainSnapshot:
    domain_id: str
    rules: tuple[PublishedRule, ...]
    generation: int
    loaded_at: float


class CacheManager:
    """Per-domain snapshots of published rules.

    Readers take the current mapping reference without locking; ``reload``
    builds the replacement snapshot first and then swaps in a new mapping with a
    single assignment, so a reader sees either the old rule set or the new one.
    """

    def __init__(self, store: RuleStore) -> None:
        self._store = store
        self._snapshots: dict[str, DomainSnapshot] = {}
        self._write_lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self._generation = 0
        self._hits = 0
        self._misses = 0
        self._reloads = 0

    def get(self, domain_id: str) -> DomainSnapshot:
        snapshot = self._snapshots.get(domain_id)
        if snapshot is not None:
            with self._stats_lock:
                self._hits += 1
            return snapshot
        with self._stats_lock:
            self._misses += 1
        return self.reload(domain_id)

    def reload(self, domain_id: str) -> DomainSnapshot:
        with self._write_lock:
            rules = self._store.published_rules(domain_id)
            self._generation += 1
            snapshot = DomainSnapshot(
                domain_id=domain_id,
                rules=rules,
                generation=self._generation,
                loaded_at=time.time(),
            )
            self._snapshots = {**self._snapshots, domain_id: snapshot}
            self._reloads += 1
        logger.info(
            "Reloaded rule cache for domain %s: %d published rules (generation %d)",
            domain_id, len(rules), snapshot.generation,
        )
        return snapshot

    def reload_all(self) -> list[DomainSnapshot]:
        return [self.reload(domain_id) for domain_id in list(self._snapshots)]

    def invalidate(self, domain_id: str) -> None:
        with self._write_lock:
            remaining = dict(self._snapshots)
            remaining.pop(domain_id, None)
            self._snapshots = remaining

    def stats(self) -> dict:
        with self._stats_lock:
            hits, misses = self._hits, self._misses
        total = hits + misses
        snapshots = self._snapshots
        return {
            "domains": sorted(snapshots),
            "size": len(snapshots),
            "hits": hits,
            "misses": misses,
            "reloads": self._reloads,
            "hit_rate": round(hits / total * 100, 1) if total > 0 else 0.0,
        }

    def clear(self) -> None:
        with self._write_lock:
            self._snapshots = {}
            self._reloads = 0
            with self._stats_lock:
                self._hits = 0
                self._misses = 0
