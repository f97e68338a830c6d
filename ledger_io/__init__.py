"""
Ledger IO - Source Package

Bulk import and export for a personal expense ledger: upload a workbook or
CSV, preview how its rows and categories map onto the ledger, import with
per-row error reporting, and download backups or error reports.

DESIGN PRINCIPLES:
1. Nothing is written before the user confirms the preview
2. One bad row never stops the rest of the file
3. No silent corrections; every rejected row is reported by row number
4. Every step must be auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Ledger IO Team"
