from datetime import datetime

import pytest

from salonbook.domain.scheduling.layout import (
    CalendarItem,
    appointments_in_time_slot,
    assign_columns,
    calculate_positions,
    find_overlap_groups,
    overflow_count,
    positions_for_time_slot,
)


def item(item_id, hhmm, minutes):
    hour, minute = map(int, hhmm.split(":"))
    return CalendarItem(id=item_id, scheduled_at=datetime(2030, 1, 8, hour, minute), duration_minutes=minutes)


def test_mutually_overlapping_records_form_one_group():
    a, b, c = item("A", "09:00", 60), item("B", "09:30", 60), item("C", "09:15", 30)

    groups = find_overlap_groups([a, b, c])

    assert len(groups) == 1
    assert [m.id for m in groups[0].members] == ["A", "C", "B"]
    assert groups[0].start == datetime(2030, 1, 8, 9, 0)
    assert groups[0].end == datetime(2030, 1, 8, 10, 30)


def test_touching_records_are_separate_groups():
    d, e = item("D", "09:00", 60), item("E", "10:00", 30)

    groups = find_overlap_groups([d, e])

    assert [[m.id for m in g.members] for g in groups] == [["D"], ["E"]]


def test_transitive_overlap_through_later_member():
    # X and Z never touch directly; Y links them
    x, z, y = item("X", "09:00", 30), item("Z", "09:45", 30), item("Y", "09:15", 45)

    groups = find_overlap_groups([x, z, y])

    assert len(groups) == 1
    assert {m.id for m in groups[0].members} == {"X", "Y", "Z"}


def test_groups_do_not_overlap_each_other():
    records = [
        item("A", "09:00", 60),
        item("B", "09:30", 30),
        item("C", "11:00", 30),
        item("D", "11:15", 30),
        item("E", "14:00", 15),
    ]

    groups = find_overlap_groups(records)

    assert len(groups) == 3
    for first in groups:
        for second in groups:
            if first is second:
                continue
            assert first.end <= second.start or second.end <= first.start


def test_equal_starts_keep_input_order():
    first, second = item("first", "10:00", 30), item("second", "10:00", 60)

    placed = calculate_positions([first, second])

    assert [(r.item.id, r.column) for r in placed] == [("first", 0), ("second", 1)]


def test_singleton_takes_full_width():
    placed = calculate_positions([item("solo", "12:00", 45)])

    assert len(placed) == 1
    record = placed[0]
    assert (record.column, record.total_columns, record.width_percent, record.left_percent) == (0, 1, 100, 0)
    assert record.overflow is False


@pytest.mark.parametrize("size", [1, 2, 3, 4])
def test_layout_bounds_within_max_columns(size):
    records = [item(str(i), "09:00", 60 + i) for i in range(size)]

    placed = calculate_positions(records, max_columns=4)

    width = 100 / size
    assert all(r.total_columns == size for r in placed)
    assert all(r.width_percent == pytest.approx(width) for r in placed)
    lefts = sorted(r.left_percent for r in placed)
    assert lefts == pytest.approx([i * width for i in range(size)])
    assert all(0 <= left < 100 for left in lefts)


def test_overflow_members_stack_in_last_column():
    records = [item(str(i), "09:00", 30) for i in range(6)]

    placed = calculate_positions(records, max_columns=4)

    assert [r.column for r in placed] == [0, 1, 2, 3, 3, 3]
    assert [r.overflow for r in placed] == [False, False, False, False, True, True]
    assert all(r.total_columns == 4 and r.width_percent == 25 for r in placed)
    assert placed[-1].left_percent == 75


def test_assign_columns_rejects_zero_columns():
    group = find_overlap_groups([item("A", "09:00", 30)])[0]

    with pytest.raises(ValueError):
        assign_columns(group, max_columns=0)


def test_empty_input():
    assert calculate_positions([]) == []
    assert find_overlap_groups([]) == []


def test_time_slot_filtering_uses_half_open_rule():
    records = [item("early", "08:30", 30), item("inside", "09:15", 30), item("spanning", "08:45", 30)]

    in_slot = appointments_in_time_slot(records, datetime(2030, 1, 8, 9, 0), slot_minutes=60)

    assert [r.id for r in in_slot] == ["inside", "spanning"]


def test_positions_for_time_slot():
    records = [item("A", "09:00", 60), item("B", "09:30", 30), item("C", "11:00", 30)]

    placed = positions_for_time_slot(records, datetime(2030, 1, 8, 9, 0), slot_minutes=60)

    assert [(r.item.id, r.column, r.total_columns) for r in placed] == [("A", 0, 2), ("B", 1, 2)]


def test_overflow_count():
    assert overflow_count(6, 4) == 2
    assert overflow_count(3, 4) == 0
