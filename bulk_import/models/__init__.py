"""Domain models for the spreadsheet bulk import pipeline.

Plain data only: the reader, validation engine, recovery planner and bulk
commit engine exchange these types and never hand out live handles.
"""

from .bulk import BatchResult, BulkError, BulkProgress, BulkResult
from .config_models import ApiConfig, ImportConfig, ImportPolicy, ReaderOptions
from .entity import EntityType, UnsupportedEntityError, parse_entity_type
from .excel_file import FileInfo, ProcessedSheet, StructureValidation
from .processing_result import ImportSummary, PipelineResult, SheetPreview
from .recovery import (
    CorrectionResult,
    RecoveryAction,
    RecoveryActionType,
    RecoveryPlan,
    RecoveryResult,
)
from .row_data import RowData
from .validation import (
    RuleType,
    Severity,
    ValidationError,
    ValidationResult,
    ValidationRule,
    ValidationSummary,
)

__all__ = [
    # Configuration models
    "ApiConfig",
    "ImportConfig",
    "ImportPolicy",
    "ReaderOptions",
    # Entities and rows
    "EntityType",
    "UnsupportedEntityError",
    "parse_entity_type",
    "RowData",
    # Reader output
    "FileInfo",
    "ProcessedSheet",
    "StructureValidation",
    # Validation
    "RuleType",
    "Severity",
    "ValidationRule",
    "ValidationError",
    "ValidationResult",
    "ValidationSummary",
    # Recovery
    "CorrectionResult",
    "RecoveryAction",
    "RecoveryActionType",
    "RecoveryPlan",
    "RecoveryResult",
    # Bulk commit
    "BatchResult",
    "BulkError",
    "BulkProgress",
    "BulkResult",
    # Pipeline
    "ImportSummary",
    "PipelineResult",
    "SheetPreview",
]
