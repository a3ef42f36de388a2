"""Position addressing: (shelf letter, row, column) <-> position code.

Codes look like ``A-B3``: shelf letter, a dash, the row letters, then the
1-based column number. Rows past ``Z`` continue bijectively as ``AA``,
``AB`` ... ``ZZ``, ``AAA``, so every row index has exactly one spelling.
"""

import re
import string
from typing import NamedTuple

from app.core.exceptions import InvalidPositionCode

_ALPHABET = string.ascii_uppercase
_CODE_RE = re.compile(r"^([A-Z])-([A-Z]+)([1-9][0-9]*)$")


class PositionAddress(NamedTuple):
    shelf_letter: str
    row_index: int
    column_index: int

    @property
    def column_number(self) -> int:
        return self.column_index + 1


def row_letter(row_index: int) -> str:
    if row_index < 0:
        raise InvalidPositionCode(f"Row index must be >= 0, got {row_index}.")
    letters = []
    n = row_index + 1
    while n:
        n, rem = divmod(n - 1, 26)
        letters.append(_ALPHABET[rem])
    return "".join(reversed(letters))


def row_index_from_letter(letters: str) -> int:
    if not letters or any(ch not in _ALPHABET for ch in letters):
        raise InvalidPositionCode(f"Invalid row letters: {letters!r}.")
    n = 0
    for ch in letters:
        n = n * 26 + _ALPHABET.index(ch) + 1
    return n - 1


def position_code(shelf_letter: str, row_index: int, column_index: int) -> str:
    """Build the canonical code. ``column_index`` is 0-based."""
    if len(shelf_letter) != 1 or shelf_letter not in _ALPHABET:
        raise InvalidPositionCode(f"Invalid shelf letter: {shelf_letter!r}.")
    if column_index < 0:
        raise InvalidPositionCode(f"Column index must be >= 0, got {column_index}.")
    return f"{shelf_letter}-{row_letter(row_index)}{column_index + 1}"


def parse_position_code(code: str) -> PositionAddress:
    match = _CODE_RE.match(code or "")
    if match is None:
        raise InvalidPositionCode(f"Malformed position code: {code!r}.")
    shelf, rows, column = match.groups()
    return PositionAddress(
        shelf_letter=shelf,
        row_index=row_index_from_letter(rows),
        column_index=int(column) - 1,
    )
