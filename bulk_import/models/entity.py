from __future__ import annotations

from enum import Enum

"""Entity types handled by the bulk import pipeline.

Each importable entity maps to one spreadsheet template and one backend
collection endpoint (``/clientes``, ``/empresas``, ``/personal``).
"""

__all__ = [
    "EntityType",
    "UnsupportedEntityError",
    "parse_entity_type",
]


class UnsupportedEntityError(ValueError):
    """Raised when an entity type outside the supported set is requested."""


class EntityType(Enum):
    """Importable entity kinds.

    UNKNOWN is only ever produced by sheet detection; it cannot be imported.
    """
    CLIENTE = "cliente"
    EMPRESA = "empresa"
    PERSONAL = "personal"
    UNKNOWN = "unknown"

    @property
    def collection(self) -> str:
        """Backend collection name (plural, as used in the REST paths)."""
        if self is EntityType.UNKNOWN:
            raise UnsupportedEntityError("entity type 'unknown' has no backend collection")
        return _COLLECTIONS[self]

    @property
    def endpoint(self) -> str:
        return f"/{self.collection}"


_COLLECTIONS = {
    EntityType.CLIENTE: "clientes",
    EntityType.EMPRESA: "empresas",
    EntityType.PERSONAL: "personal",
}


def parse_entity_type(value: str | EntityType) -> EntityType:
    """Normalize user input (``"Cliente"``, ``"clientes"``, enum) to an importable EntityType.

    Raises:
        UnsupportedEntityError: for unknown names and for ``unknown`` itself
    """
    if isinstance(value, EntityType):
        entity = value
    else:
        key = str(value).strip().lower()
        entity = None
        for candidate, collection in _COLLECTIONS.items():
            if key in (candidate.value, collection):
                entity = candidate
                break
        if entity is None:
            raise UnsupportedEntityError(f"Tipo de entidad no soportado: {value}")
    if entity is EntityType.UNKNOWN:
        raise UnsupportedEntityError("Tipo de entidad no soportado: unknown")
    return entity
