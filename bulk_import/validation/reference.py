from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from rapidfuzz import fuzz

from ..api.client import RecordStore

"""Read-only snapshot of existing backend records.

Loaded once per import session and never refreshed mid-session. Used by
unique rules (``existing``), reference rules (``cross_references``, keyed by
the lower-cased record name) and the recovery planner's reference matcher.
"""

logger = logging.getLogger(__name__)

__all__ = [
    "ReferenceSnapshot",
    "REFERENCE_COLLECTIONS",
    "FUZZY_MATCH_THRESHOLD",
]

REFERENCE_COLLECTIONS = ("clientes", "empresas", "personal")
# collections that get a name-keyed cross-reference map
_CROSS_REFERENCED = ("empresas",)

FUZZY_MATCH_THRESHOLD = 85.0
CONTAINMENT_CONFIDENCE = 0.85


def _key(value: Any) -> str:
    return str(value).strip().lower()


@dataclass(frozen=True)
class ReferenceSnapshot:
    existing: Mapping[str, list[dict[str, Any]]] = field(default_factory=dict)
    cross_references: Mapping[str, dict[str, dict[str, Any]]] = field(default_factory=dict)

    @classmethod
    def from_records(cls, **collections: Iterable[Mapping[str, Any]]) -> ReferenceSnapshot:
        """Build a snapshot from ``collection=records`` keyword arguments."""
        existing = {name: [dict(r) for r in records] for name, records in collections.items()}
        cross: dict[str, dict[str, dict[str, Any]]] = {}
        for name in _CROSS_REFERENCED:
            if name not in existing:
                continue
            by_name: dict[str, dict[str, Any]] = {}
            for record in existing[name]:
                nombre = record.get("nombre")
                if nombre is None or str(nombre).strip() == "":
                    continue
                by_name.setdefault(_key(nombre), record)
            cross[name] = by_name
        return cls(existing=existing, cross_references=cross)

    @classmethod
    async def load(cls, client: RecordStore) -> ReferenceSnapshot:
        """Fetch every reference collection concurrently.

        A failing endpoint degrades to an empty collection with a warning.
        """
        results = await asyncio.gather(
            *(client.list_records(f"/{name}") for name in REFERENCE_COLLECTIONS),
            return_exceptions=True,
        )
        collections: dict[str, list[dict[str, Any]]] = {}
        for name, result in zip(REFERENCE_COLLECTIONS, results):
            if isinstance(result, Exception):
                logger.warning(f"reference data unavailable for /{name}: {result}")
                collections[name] = []
            else:
                collections[name] = list(result)
        snapshot = cls.from_records(**collections)
        logger.info(
            "reference data loaded: "
            + ", ".join(f"{name}={len(collections[name])}" for name in REFERENCE_COLLECTIONS)
        )
        return snapshot

    def records(self, collection: str) -> list[dict[str, Any]]:
        return self.existing.get(collection.strip("/"), [])

    def contains_value(self, collection: str, field_name: str, value: Any) -> bool:
        """Case-insensitive, trimmed comparison against ``field_name`` of every record."""
        wanted = _key(value)
        for record in self.records(collection):
            other = record.get(field_name)
            if other is None or str(other).strip() == "":
                continue
            if _key(other) == wanted:
                return True
        return False

    def reference_map(self, collection: str) -> dict[str, dict[str, Any]] | None:
        """Name-keyed map, or None when the collection is not cross-referenced."""
        return self.cross_references.get(collection.strip("/"))

    def reference_keys(self, collection: str) -> list[str]:
        return list((self.reference_map(collection) or {}).keys())

    def display_name(self, collection: str, key: str) -> str:
        record = (self.reference_map(collection) or {}).get(key)
        if record is None or record.get("nombre") is None:
            return key
        return str(record["nombre"]).strip()

    def find_containment_match(self, collection: str, value: Any) -> str | None:
        """First reference key containing, or contained in, ``value``."""
        lowered = _key(value)
        if not lowered:
            return None
        for key in self.reference_keys(collection):
            if lowered in key or key in lowered:
                return key
        return None

    def find_near_match(self, collection: str, value: Any) -> tuple[str, float] | None:
        """Best reference name for a value with a confidence in [0, 1].

        Containment wins first at a fixed confidence; otherwise the highest
        rapidfuzz ratio at or above the threshold (earliest key on ties).
        """
        key = self.find_containment_match(collection, value)
        if key is not None:
            return self.display_name(collection, key), CONTAINMENT_CONFIDENCE

        lowered = _key(value)
        if not lowered:
            return None
        best_key: str | None = None
        best_score = 0.0
        for candidate in self.reference_keys(collection):
            score = fuzz.ratio(lowered, candidate)
            if score > best_score:
                best_key, best_score = candidate, score
        if best_key is None or best_score < FUZZY_MATCH_THRESHOLD:
            return None
        return self.display_name(collection, best_key), round(best_score / 100 * 0.9, 4)
