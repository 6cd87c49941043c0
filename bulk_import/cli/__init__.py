"""Command line interface (``bulk-import`` / ``python -m bulk_import.cli``)."""
