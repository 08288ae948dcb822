from __future__ import annotations

from typing import List, Tuple

from scribedesk.core.dedup.grouper import newest_first
from scribedesk.core.dedup.models import DuplicateGroup


def merged_tag_ids(group: DuplicateGroup) -> Tuple[str, List[str]]:
    """Return (newest record id, union of tag ids across every version in first-seen order)."""
    members = newest_first(group.members)
    seen: List[str] = []
    for m in members:
        for t in m.tags:
            if t.id not in seen:
                seen.append(t.id)
    return members[0].id, seen
