"""
Name Parser

Turns pasted text or uploaded CSV files into lists of substance names.
"""

import csv
import io
import re
from pathlib import Path
from typing import List, Union

NAME_SEPARATORS = re.compile(r"[\n,]")


def parse_generic_names(text: str) -> List[str]:
    """Split pasted text on newlines and commas, dropping blank entries."""
    return [part.strip() for part in NAME_SEPARATORS.split(text) if part.strip()]


def parse_csv_file(text: str) -> List[str]:
    """
    Read every non-empty cell of a CSV document as a name.

    Quoted cells may contain commas; surrounding quotes are removed.
    """
    names = []
    reader = csv.reader(io.StringIO(text, newline=""), skipinitialspace=True)
    for row in reader:
        for cell in row:
            cell = cell.strip()
            if cell:
                names.append(cell)
    return names


def read_names_file(path: Union[str, Path]) -> List[str]:
    """Read names from a file; .csv files are parsed cell by cell."""
    path = Path(path)
    text = path.read_text(encoding="utf-8-sig")
    if path.suffix.lower() == ".csv":
        return parse_csv_file(text)
    return parse_generic_names(text)
