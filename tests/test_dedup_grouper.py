from __future__ import annotations

import pytest

from scribedesk.core.dedup.grouper import find_duplicate_groups, group_by_checksum, newest_first
from scribedesk.core.dedup.models import DuplicateGroup, RecordStatus
from tests.helpers.records import make_record


def test_groups_never_mix_checksums():
    recs = [
        make_record("a1", checksum="A", age_days=3),
        make_record("b1", checksum="B", age_days=2),
        make_record("a2", checksum="A", age_days=1),
        make_record("b2", checksum="B", age_days=0),
    ]
    groups = find_duplicate_groups(recs)
    assert len(groups) == 2
    for g in groups:
        assert {m.checksum for m in g.members} == {g.checksum}


def test_null_and_blank_checksums_never_grouped():
    recs = [
        make_record("n1", checksum=None),
        make_record("n2", checksum=None),
        make_record("n3", checksum="  "),
        make_record("n4", checksum=""),
    ]
    assert recs[2].checksum is None
    assert group_by_checksum(recs) == {}
    assert find_duplicate_groups(recs) == []


def test_singletons_excluded_but_kept_in_lookup_view():
    recs = [make_record("x", checksum="X"), make_record("y1", checksum="Y"), make_record("y2", checksum="Y", age_days=1)]
    buckets = group_by_checksum(recs)
    assert set(buckets) == {"X", "Y"}
    groups = find_duplicate_groups(recs)
    assert [g.checksum for g in groups] == ["Y"]


def test_members_newest_first_and_groups_largest_first():
    recs = [
        make_record("a_old", checksum="A", age_days=5),
        make_record("a_new", checksum="A", age_days=1),
        make_record("b1", checksum="B", age_days=4),
        make_record("b2", checksum="B", age_days=3),
        make_record("b3", checksum="B", age_days=2),
    ]
    groups = find_duplicate_groups(recs)
    assert [g.checksum for g in groups] == ["B", "A"]
    assert [m.id for m in groups[1].members] == ["a_new", "a_old"]
    assert groups[0].newest.id == "b3"


def test_equal_timestamps_keep_input_order():
    recs = [make_record("first", age_days=1), make_record("second", age_days=1)]
    assert [r.id for r in newest_first(recs)] == ["first", "second"]


def test_completed_only_filter():
    recs = [
        make_record("ok1"),
        make_record("ok2", age_days=1),
        make_record("bad", age_days=2, status=RecordStatus.FAILED),
    ]
    assert find_duplicate_groups(recs)[0].count == 3
    assert find_duplicate_groups(recs, completed_only=True)[0].count == 2


def test_group_size_properties():
    recs = [make_record("n", age_days=0, text="a" * 30), make_record("o", age_days=10, text="b" * 20)]
    g = find_duplicate_groups(recs)[0]
    assert g.total_size == 50
    assert g.wasted_size == 20
    assert g.oldest_timestamp < g.newest_timestamp


def test_group_requires_two_members():
    with pytest.raises(Exception):
        DuplicateGroup(checksum="A", members=[make_record("only")])
