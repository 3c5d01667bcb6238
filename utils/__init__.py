"""Report helpers (pandas tables, Excel/CSV exports)."""
