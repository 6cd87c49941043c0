from __future__ import annotations

from ..models.processing_result import ImportSummary

"""SUMMARY line rendering.

Format:
SUMMARY entity={entity} rows={total} valid={valid} errors={errors} skipped={skipped}
inserted={inserted} failed={failed} elapsed_sec={elapsed} throughput_rps={throughput}

(one line; wrapped here for readability)
"""

__all__ = [
    "render_summary_line",
    "format_number",
]


def format_number(value: float) -> str:
    """Integers without a decimal point; tiny values without scientific notation."""
    if value == 0:
        return "0"
    if value == int(value):
        return str(int(value))
    if abs(value) < 0.01:
        return f"{value:.6f}".rstrip("0").rstrip(".")
    return f"{value:.2f}".rstrip("0").rstrip(".")


def render_summary_line(entity: str, summary: ImportSummary) -> str:
    """Render the SUMMARY line of one import session.

    Examples:
        >>> s = ImportSummary(total_rows=10, valid_rows=8, error_rows=2, skipped_rows=0,
        ...                   inserted_rows=8, failed_rows=0, elapsed_seconds=2.0,
        ...                   throughput_rows_per_sec=4.0)
        >>> render_summary_line("cliente", s)
        'SUMMARY entity=cliente rows=10 valid=8 errors=2 skipped=0 inserted=8 failed=0 elapsed_sec=2 throughput_rps=4'
    """
    return (
        f"SUMMARY entity={entity} "
        f"rows={summary.total_rows} "
        f"valid={summary.valid_rows} "
        f"errors={summary.error_rows} "
        f"skipped={summary.skipped_rows} "
        f"inserted={summary.inserted_rows} "
        f"failed={summary.failed_rows} "
        f"elapsed_sec={format_number(summary.elapsed_seconds)} "
        f"throughput_rps={format_number(summary.throughput_rows_per_sec)}"
    )
