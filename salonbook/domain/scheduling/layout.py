"""
Calendar layout for overlapping appointments

Pure functions, no I/O. Input records need `id`, `scheduled_at` and
`duration_minutes` attributes (appointments, holds, or CalendarItem).
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, List, Optional, Sequence

from .time_calculator import intervals_overlap

DEFAULT_MAX_COLUMNS = 4


@dataclass
class CalendarItem:
    """Anything that occupies a staff member's calendar"""

    id: Any
    scheduled_at: datetime
    duration_minutes: int
    kind: str = "appointment"  # appointment or hold
    staff_id: Optional[int] = None
    title: Optional[str] = None


@dataclass
class OverlapGroup:
    members: list
    start: datetime
    end: datetime

    @property
    def size(self) -> int:
        return len(self.members)


@dataclass
class RenderRecord:
    item: Any
    column: int
    total_columns: int
    width_percent: float
    left_percent: float
    overflow: bool = field(default=False)


def _end(record) -> datetime:
    return record.scheduled_at + timedelta(minutes=record.duration_minutes)


def records_overlap(first, second) -> bool:
    return intervals_overlap(first.scheduled_at, _end(first), second.scheduled_at, _end(second))


def find_overlap_groups(records: Sequence) -> List[OverlapGroup]:
    """
    Partition records into transitively-overlapping groups.

    Seeds a group with the first unprocessed record, then keeps scanning
    the unprocessed records for anything overlapping ANY group member
    until a full scan adds nothing. Members are ordered by start time,
    ties keep input order.
    """
    records = list(records)
    processed = [False] * len(records)
    groups = []

    for seed_index in range(len(records)):
        if processed[seed_index]:
            continue

        processed[seed_index] = True
        member_indexes = [seed_index]

        found_new_overlap = True
        while found_new_overlap:
            found_new_overlap = False
            for other_index, other in enumerate(records):
                if processed[other_index]:
                    continue
                if any(records_overlap(records[i], other) for i in member_indexes):
                    member_indexes.append(other_index)
                    processed[other_index] = True
                    found_new_overlap = True

        member_indexes.sort(key=lambda i: (records[i].scheduled_at, i))
        members = [records[i] for i in member_indexes]
        groups.append(
            OverlapGroup(
                members=members,
                start=min(m.scheduled_at for m in members),
                end=max(_end(m) for m in members),
            )
        )

    return groups


def assign_columns(group: OverlapGroup, max_columns: int = DEFAULT_MAX_COLUMNS) -> List[RenderRecord]:
    """
    Column/width/offset for each member of one overlap group.

    Members past the last column all share it (they stack on top of each
    other); `overflow` marks them so a view can show "+N more".
    """
    if max_columns < 1:
        raise ValueError("max_columns must be at least 1")

    actual_columns = min(group.size, max_columns)
    width = 100 / actual_columns

    placed = []
    for index, member in enumerate(group.members):
        column = min(index, max_columns - 1)
        placed.append(
            RenderRecord(
                item=member,
                column=column,
                total_columns=actual_columns,
                width_percent=width,
                left_percent=column * width,
                overflow=index >= max_columns,
            )
        )
    return placed


def calculate_positions(records: Sequence, max_columns: int = DEFAULT_MAX_COLUMNS) -> List[RenderRecord]:
    """Group records and lay out every group. Singletons get the full width."""
    if not records:
        return []

    result = []
    for group in find_overlap_groups(records):
        result.extend(assign_columns(group, max_columns))
    return result


def appointments_in_time_slot(records: Sequence, slot_start: datetime, slot_minutes: int = 60) -> list:
    """Records intersecting [slot_start, slot_start + slot_minutes)"""
    slot_end = slot_start + timedelta(minutes=slot_minutes)
    return [
        record
        for record in records
        if intervals_overlap(record.scheduled_at, _end(record), slot_start, slot_end)
    ]


def positions_for_time_slot(
    records: Sequence,
    slot_start: datetime,
    slot_minutes: int = 60,
    max_columns: int = DEFAULT_MAX_COLUMNS,
) -> List[RenderRecord]:
    return calculate_positions(appointments_in_time_slot(records, slot_start, slot_minutes), max_columns)


def overflow_count(total: int, max_visible: int) -> int:
    """How many records a view hides behind a "+N more" badge"""
    return max(0, total - max_visible)
