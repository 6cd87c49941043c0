from __future__ import annotations

from .engine import ValidationEngine
from .reference import ReferenceSnapshot
from .rules import RuleCatalog
from .templates import check_template

__all__ = ["ValidationEngine", "ReferenceSnapshot", "RuleCatalog", "check_template"]
