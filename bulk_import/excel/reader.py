from __future__ import annotations

import io
import logging
from collections.abc import Iterable, Mapping
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, BinaryIO, Union

import numpy as np
import pandas as pd

from ..models.config_models import ReaderOptions
from ..models.entity import EntityType
from ..models.excel_file import FileInfo, ProcessedSheet, StructureValidation
from ..models.row_data import RowData

"""Tabular reader: spreadsheet bytes -> named sheets of headers and rows.

Row 1 of every sheet is the header row; data starts on row 2. Cells are
normalized so later stages never see decoder-specific types:
- strings are trimmed (optional)
- integral floats become ints
- date cells and date serial numbers (integers in 1 < v < 50000) both become
  ``DD/MM/YYYY`` strings
- blank rows are dropped unless ``skip_empty_rows`` is off

Decoding uses pandas (openpyxl engine) with ``dtype=object`` and NA
conversion disabled so cell values arrive unchanged.
"""

logger = logging.getLogger(__name__)

__all__ = [
    "ReaderError",
    "TabularReader",
    "read_workbook",
    "normalize_cell",
    "format_date",
    "looks_like_date_serial",
    "convert_date_serial",
    "is_empty_row",
    "extract_headers",
    "identify_entity_by_headers",
]

# path | raw bytes | binary stream | already decoded {sheet: 2-D cells}
Source = Union[str, Path, bytes, bytearray, BinaryIO, Mapping[str, list[list[Any]]]]

DATE_SERIAL_MIN = 1
DATE_SERIAL_MAX = 50000
COLUMN_PREFIX = "Column_"

# Order matters: personal is the most specific template.
_ENTITY_HEADER_HINTS: list[tuple[EntityType, tuple[str, ...]]] = [
    (EntityType.PERSONAL, ("nombre", "apellido", "dni")),
    (EntityType.CLIENTE, ("nombre", "cuit")),
    (EntityType.EMPRESA, ("nombre", "tipo")),
]
_EMPRESA_EXTRA_HINTS = ("propia", "subcontratada")


class ReaderError(Exception):
    """Raised for programmer errors and undecodable sources."""


def read_workbook(source: str | Path | bytes | bytearray | BinaryIO) -> dict[str, list[list[Any]]]:
    """Decode a workbook into ``{sheet name: rows of raw cell values}``.

    Sheet order is preserved. Empty cells come back as None.
    """
    if isinstance(source, (bytes, bytearray)):
        source = io.BytesIO(bytes(source))
    try:
        frames = pd.read_excel(
            source,
            sheet_name=None,
            header=None,
            dtype=object,
            keep_default_na=False,
            na_values=[],
        )
    except Exception as e:
        raise ReaderError(f"Error al leer el archivo: {e}") from e

    sheets: dict[str, list[list[Any]]] = {}
    for name, df in frames.items():
        rows: list[list[Any]] = []
        for raw in df.itertuples(index=False, name=None):
            rows.append([_to_python(v) for v in raw])
        sheets[str(name)] = rows
    return sheets


def _to_python(value: Any) -> Any:
    if isinstance(value, np.generic):
        value = value.item()
    if value is pd.NaT:
        return None
    if isinstance(value, float) and np.isnan(value):
        return None
    return value


def format_date(value: date) -> str:
    return f"{value.day:02d}/{value.month:02d}/{value.year:04d}"


def looks_like_date_serial(value: Any) -> bool:
    """Spreadsheet date serials for common dates fall in 1 < v < 50000."""
    if isinstance(value, bool) or not isinstance(value, int):
        return False
    return DATE_SERIAL_MIN < value < DATE_SERIAL_MAX


def convert_date_serial(value: int) -> str:
    # Serials below 60 predate the phantom 29/02/1900 of the 1900 date system.
    epoch = datetime(1899, 12, 31) if value < 60 else datetime(1899, 12, 30)
    return format_date(epoch + timedelta(days=value))


def normalize_cell(value: Any, trim: bool = True) -> tuple[Any, bool]:
    """Normalize one cell.

    Returns:
        (normalized value, has_data). Empty cells normalize to ``""``.
    """
    value = _to_python(value)
    if value is None or value == "":
        return "", False
    if isinstance(value, str):
        if trim:
            value = value.strip()
        return value, value.strip() != ""
    if isinstance(value, (datetime, date)):
        return format_date(value), True
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if looks_like_date_serial(value):
        return convert_date_serial(value), True
    return value, True


def is_empty_row(row: Iterable[Any]) -> bool:
    for cell in row:
        cell = _to_python(cell)
        if cell is None:
            continue
        if isinstance(cell, str) and cell.strip() == "":
            continue
        return False
    return True


def extract_headers(header_row: list[Any], trim: bool = True) -> list[str]:
    headers: list[str] = []
    for index, raw in enumerate(header_row):
        raw = _to_python(raw)
        if raw is None or (isinstance(raw, str) and raw.strip() == ""):
            header = f"{COLUMN_PREFIX}{index + 1}"
        else:
            header = str(raw)
        headers.append(header.strip() if trim else header)
    return headers


def identify_entity_by_headers(headers: Iterable[str]) -> EntityType:
    """Best-effort entity detection by case-insensitive header substrings."""
    lowered = [h.lower() for h in headers]

    def has(term: str) -> bool:
        return any(term in h for h in lowered)

    for entity, terms in _ENTITY_HEADER_HINTS:
        if all(has(t) for t in terms):
            if entity is EntityType.EMPRESA and not any(has(t) for t in _EMPRESA_EXTRA_HINTS):
                continue
            return entity
    return EntityType.UNKNOWN


class TabularReader:
    """Holds one loaded workbook and turns its sheets into rows.

    Not safe to share between concurrent import sessions; create one reader
    per session and ``dispose()`` it afterwards.
    """

    ERROR_NO_FILE_LOADED = "No hay archivo cargado"

    def __init__(self, options: ReaderOptions | None = None) -> None:
        self.options = options or ReaderOptions()
        self._sheets: dict[str, list[list[Any]]] | None = None
        self._filename = ""
        self._size = 0

    @property
    def loaded(self) -> bool:
        return self._sheets is not None

    @property
    def sheet_names(self) -> list[str]:
        return list(self._require_workbook().keys())

    def load(self, source: Source, filename: str | None = None) -> FileInfo:
        """Load a workbook from a path, bytes, a binary stream or decoded sheets."""
        size = 0
        if isinstance(source, Mapping):
            sheets = {str(k): [list(r) for r in v] for k, v in source.items()}
            name = filename or "<memory>"
        else:
            if isinstance(source, (str, Path)):
                path = Path(source)
                if not path.exists():
                    raise ReaderError(f"file not found: {path}")
                size = path.stat().st_size
                name = filename or path.name
            elif isinstance(source, (bytes, bytearray)):
                size = len(source)
                name = filename or "<bytes>"
            else:
                name = filename or getattr(source, "name", "<stream>")
            sheets = read_workbook(source)

        self._sheets = sheets
        self._filename = str(name)
        self._size = size
        info = self.file_info()
        logger.debug(f"loaded workbook {info.filename} sheets={info.sheets} rows={info.total_rows}")
        return info

    def file_info(self) -> FileInfo:
        sheets = self._require_workbook()
        total = sum(len(rows) for rows in sheets.values())
        return FileInfo(
            filename=self._filename,
            size=self._size,
            sheets=list(sheets.keys()),
            total_rows=total,
        )

    def validate_structure(self) -> StructureValidation:
        """Gross structural checks. Never raises; problems come back as messages."""
        if self._sheets is None:
            return StructureValidation(valid=False, errors=[self.ERROR_NO_FILE_LOADED])

        errors: list[str] = []
        names = list(self._sheets.keys())

        missing = [s for s in self.options.required_sheets if s not in names]
        if missing:
            errors.append(f"Faltan las siguientes hojas: {', '.join(missing)}")

        if not names:
            errors.append("El archivo no contiene hojas de cálculo")

        total_rows = self.file_info().total_rows
        if total_rows > self.options.max_rows:
            errors.append(
                f"El archivo tiene demasiadas filas ({total_rows}). "
                f"Máximo permitido: {self.options.max_rows}"
            )

        return StructureValidation(valid=not errors, errors=errors)

    def read_sheet(self, sheet_name: str) -> ProcessedSheet:
        sheets = self._require_workbook()
        if sheet_name not in sheets:
            raise ReaderError(f'La hoja "{sheet_name}" no existe en el archivo')

        raw_rows = sheets[sheet_name]
        if not raw_rows:
            return ProcessedSheet(
                sheet_name=sheet_name,
                headers=[],
                rows=[],
                total_rows=0,
                processed_rows=0,
                errors=["La hoja está vacía"],
            )

        trim = self.options.trim
        skip_empty = self.options.skip_empty_rows
        headers = extract_headers(raw_rows[0], trim)
        rows: list[RowData] = []

        # Row 1 is the header; enumerate from 2 so numbers match the spreadsheet.
        for row_number, raw in enumerate(raw_rows[1:], start=2):
            if skip_empty and is_empty_row(raw):
                continue
            values: dict[str, Any] = {}
            has_data = False
            for col, header in enumerate(headers):
                cell = raw[col] if col < len(raw) else None
                value, cell_has_data = normalize_cell(cell, trim)
                has_data = has_data or cell_has_data
                values[header] = value
            if has_data or not skip_empty:
                rows.append(RowData(row_number=row_number, values=values))

        return ProcessedSheet(
            sheet_name=sheet_name,
            headers=headers,
            rows=rows,
            total_rows=len(raw_rows) - 1,
            processed_rows=len(rows),
            errors=[],
        )

    def read_all_sheets(self) -> list[ProcessedSheet]:
        return [self.read_sheet(name) for name in self.sheet_names]

    def find_sheet(self, name: str) -> str | None:
        """Case-insensitive, whitespace-tolerant sheet lookup."""
        if self._sheets is None:
            return None
        wanted = name.strip().lower()
        for sheet_name in self._sheets:
            if sheet_name.strip().lower() == wanted:
                return sheet_name
        return None

    def get_data_sample(self, sheet_name: str, sample_size: int = 5) -> list[dict[str, Any]]:
        return self.read_sheet(sheet_name).as_dicts()[:sample_size]

    def detect_entity_type(self, sheet_name: str) -> EntityType:
        try:
            headers = self.read_sheet(sheet_name).headers
        except ReaderError:
            return EntityType.UNKNOWN
        return identify_entity_by_headers(headers)

    def validate_required_headers(
        self, sheet_name: str, required_headers: Iterable[str]
    ) -> tuple[bool, list[str]]:
        """Check that every required header appears (case-insensitive substring).

        Returns:
            (valid, missing headers)
        """
        headers = [h.lower().strip() for h in self.read_sheet(sheet_name).headers]
        missing = [
            required for required in required_headers
            if not any(required.lower().strip() in h for h in headers)
        ]
        return (not missing, missing)

    def processing_stats(self) -> dict[str, int]:
        if self._sheets is None:
            return {"total_sheets": 0, "total_rows": 0, "processed_rows": 0, "error_count": 0}
        processed = self.read_all_sheets()
        return {
            "total_sheets": len(processed),
            "total_rows": sum(p.total_rows for p in processed),
            "processed_rows": sum(p.processed_rows for p in processed),
            "error_count": sum(len(p.errors) for p in processed),
        }

    def dispose(self) -> None:
        self._sheets = None
        self._filename = ""
        self._size = 0

    def _require_workbook(self) -> dict[str, list[list[Any]]]:
        if self._sheets is None:
            raise ReaderError(self.ERROR_NO_FILE_LOADED)
        return self._sheets
