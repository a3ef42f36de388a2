"""Validated value objects for shelf geometry and floor-plan coordinates.

Invariants are checked once, at construction; code holding one of these can
rely on it without re-validating.
"""

import string
from dataclasses import dataclass

from app.config import settings
from app.core.exceptions import InvalidDimensions


def normalize_shelf_letter(letter: str) -> str:
    """Upper-case and validate a caller-supplied shelf letter."""
    value = (letter or "").strip().upper()
    if len(value) != 1 or value not in string.ascii_uppercase:
        raise InvalidDimensions(
            f"Shelf letter must be a single letter A-Z, got {letter!r}."
        )
    return value


@dataclass(frozen=True)
class ShelfDimensions:
    rows: int
    columns: int
    samples_per_position: int

    def __post_init__(self) -> None:
        if self.rows < 1 or self.columns < 1:
            raise InvalidDimensions(
                f"Shelf must have at least one row and one column "
                f"(got {self.rows}x{self.columns})."
            )
        if self.rows > settings.MAX_SHELF_ROWS or self.columns > settings.MAX_SHELF_COLUMNS:
            raise InvalidDimensions(
                f"Shelf may not exceed {settings.MAX_SHELF_ROWS} rows or "
                f"{settings.MAX_SHELF_COLUMNS} columns."
            )
        if not 1 <= self.samples_per_position <= settings.MAX_SAMPLES_PER_POSITION:
            raise InvalidDimensions(
                f"Samples per position must be between 1 and "
                f"{settings.MAX_SAMPLES_PER_POSITION}."
            )

    @property
    def position_count(self) -> int:
        return self.rows * self.columns

    @property
    def total_capacity(self) -> int:
        return self.position_count * self.samples_per_position

    def cells(self):
        """Yield (row_index, column_index) pairs in row-major order, 0-based."""
        for r in range(self.rows):
            for c in range(self.columns):
                yield r, c


@dataclass(frozen=True)
class Coordinates:
    """A point on the floor plan, in grid cells."""

    x: int
    y: int

    def __post_init__(self) -> None:
        if self.x < 0 or self.y < 0:
            raise InvalidDimensions(
                f"Floor-plan coordinates must be non-negative (got {self.x}, {self.y})."
            )
