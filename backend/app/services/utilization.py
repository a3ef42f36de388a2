"""Occupancy / capacity arithmetic for positions, shelves and laboratories."""

from collections.abc import Iterable
from dataclasses import asdict, dataclass

from app.config import settings
from app.core.exceptions import ZeroCapacity
from app.models.enums import UtilizationBand


def utilization_pct(occupancy: int, capacity: int) -> float:
    """Raw percentage; may exceed 100 for an over-packed container."""
    if capacity <= 0:
        raise ZeroCapacity("Utilization is undefined for zero capacity.")
    return occupancy / capacity * 100


def display_pct(pct: float) -> float:
    return max(0.0, min(100.0, pct))


def classify(
    pct: float,
    medium: float | None = None,
    high: float | None = None,
) -> UtilizationBand:
    medium = settings.UTILIZATION_MEDIUM_PCT if medium is None else medium
    high = settings.UTILIZATION_HIGH_PCT if high is None else high
    if pct <= 0:
        return UtilizationBand.EMPTY
    if pct >= 100:
        return UtilizationBand.FULL
    if pct >= high:
        return UtilizationBand.HIGH
    if pct >= medium:
        return UtilizationBand.MEDIUM
    return UtilizationBand.LOW


@dataclass(frozen=True)
class UtilizationSummary:
    total_positions: int
    occupied_positions: int
    total_capacity: int
    current_count: int
    utilization_pct: float | None
    band: UtilizationBand | None

    @property
    def available_capacity(self) -> int:
        return max(self.total_capacity - self.current_count, 0)

    def as_dict(self) -> dict:
        data = asdict(self)
        data["available_capacity"] = self.available_capacity
        if self.utilization_pct is not None:
            data["utilization_pct"] = round(self.utilization_pct, 2)
        return data


def from_totals(
    total_positions: int,
    occupied_positions: int,
    total_capacity: int,
    current_count: int,
    *,
    strict: bool = True,
) -> UtilizationSummary:
    if total_capacity <= 0 and not strict:
        pct = None
    else:
        pct = utilization_pct(current_count, total_capacity)
    return UtilizationSummary(
        total_positions=total_positions,
        occupied_positions=occupied_positions,
        total_capacity=total_capacity,
        current_count=current_count,
        utilization_pct=pct,
        band=classify(pct) if pct is not None else None,
    )


def summarize(
    positions: Iterable[tuple[int, int]], *, strict: bool = True
) -> UtilizationSummary:
    """Summarize (occupancy, capacity) pairs, e.g. every position of a shelf.

    With ``strict`` an empty or zero-capacity input raises ``ZeroCapacity``;
    otherwise ``utilization_pct`` is reported as ``None``.
    """
    total_positions = occupied = capacity = count = 0
    for occupancy, cap in positions:
        total_positions += 1
        capacity += cap
        count += occupancy
        if occupancy > 0:
            occupied += 1
    return from_totals(total_positions, occupied, capacity, count, strict=strict)


def combine(
    summaries: Iterable[UtilizationSummary], *, strict: bool = True
) -> UtilizationSummary:
    """Aggregate shelf summaries into a laboratory summary."""
    total_positions = occupied = capacity = count = 0
    for s in summaries:
        total_positions += s.total_positions
        occupied += s.occupied_positions
        capacity += s.total_capacity
        count += s.current_count
    return from_totals(total_positions, occupied, capacity, count, strict=strict)
