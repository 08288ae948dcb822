from __future__ import annotations

from typing import Dict, Iterable, List

from scribedesk.core.dedup.models import DuplicateGroup, Record, RecordStatus


def newest_first(records: Iterable[Record]) -> List[Record]:
    # sorted() is stable, so equal timestamps keep their input order
    return sorted(records, key=lambda r: r.created_at, reverse=True)


def group_by_checksum(records: Iterable[Record]) -> Dict[str, List[Record]]:
    """
    Map every non-null checksum to its records, in input order.

    Singleton buckets are kept here (lookup view); records without a checksum
    are never bucketed.
    """
    buckets: Dict[str, List[Record]] = {}
    for r in records:
        if not r.checksum:
            continue
        buckets.setdefault(r.checksum, []).append(r)
    return buckets


def find_duplicate_groups(records: Iterable[Record], *, completed_only: bool = False) -> List[DuplicateGroup]:
    if completed_only:
        records = [r for r in records if r.status == RecordStatus.COMPLETED]
    groups = [
        DuplicateGroup(checksum=checksum, members=newest_first(members))
        for checksum, members in group_by_checksum(records).items()
        if len(members) >= 2
    ]
    groups.sort(key=lambda g: g.count, reverse=True)
    return groups
