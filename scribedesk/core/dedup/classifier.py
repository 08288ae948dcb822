from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Iterable, List, Optional

from scribedesk.core.dedup.grouper import newest_first
from scribedesk.core.dedup.models import (
    ClassifiedGroup,
    ClassifiedMember,
    DuplicateGroup,
    Record,
    RetentionPolicy,
    RetentionReason,
    as_utc,
    utc_now,
)


def _reason(record: Record, *, is_newest: bool, policy: RetentionPolicy, now: datetime) -> RetentionReason:
    if record.protected:
        return RetentionReason.PROTECTED
    # the newest member is labelled NewestKept even inside the age window
    if policy.keep_latest and is_newest:
        return RetentionReason.NEWEST_KEPT
    if now - record.created_at < timedelta(days=policy.age_threshold_days):
        return RetentionReason.TOO_RECENT
    return RetentionReason.DELETABLE


def classify_group(group: DuplicateGroup, policy: Any, now: Optional[datetime] = None) -> ClassifiedGroup:
    """
    Label every member of one duplicate group.

    policy may be a RetentionPolicy or its dict form; a malformed policy raises
    PolicyValidationError before anything is labelled. Members come back
    newest-first whatever order the group was built in. Records are never
    mutated.
    """
    pol = RetentionPolicy.parse(policy)
    at = as_utc(now) if now is not None else utc_now()
    members = newest_first(group.members)
    out: List[ClassifiedMember] = []
    for idx, rec in enumerate(members):
        reason = _reason(rec, is_newest=idx == 0, policy=pol, now=at)
        out.append(ClassifiedMember(record=rec, will_be_deleted=reason == RetentionReason.DELETABLE, reason=reason))
    return ClassifiedGroup(group=DuplicateGroup(checksum=group.checksum, members=members), members=out)


def classify_groups(groups: Iterable[DuplicateGroup], policy: Any, now: Optional[datetime] = None) -> List[ClassifiedGroup]:
    pol = RetentionPolicy.parse(policy)
    at = as_utc(now) if now is not None else utc_now()
    return [classify_group(g, pol, at) for g in groups]
