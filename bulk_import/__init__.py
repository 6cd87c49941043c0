"""Spreadsheet bulk import for the fleet management backend.

Reads a cliente / empresa / personal workbook, validates every row against
the entity's rule catalog, optionally auto-recovers invalid rows and commits
the result in concurrent batches through the backend REST API.
"""

__version__ = "0.1.0"
