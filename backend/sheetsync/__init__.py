"""Sync semicolon-delimited CSV exports into Google Sheets tabs."""
