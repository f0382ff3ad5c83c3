"""
Parsers module - name list parsing for pasted text and CSV uploads.
"""

from src.label_lookup.parsers.name_parser import parse_csv_file, parse_generic_names, read_names_file

__all__ = [
    'parse_csv_file',
    'parse_generic_names',
    'read_names_file',
]
