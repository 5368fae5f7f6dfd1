"""
PlanPace - Version Selection Module.

Campaigns accumulate versions over their lifecycle; invoices and accruals
must use exactly one of them. This module picks that version per campaign
with a prioritised comparator chain, applied in order and stopping at the
first step that separates two candidates:

    1. Matches the master record's latest version number and linking id
    2. Higher numeric version number
    3. Later updated_at
    4. Later created_at
    5. Higher record id

A value that is missing or unparseable at a step loses to any present
value. Two versions differing anywhere in the chain are ordered the same
way regardless of input order.

Classes:
    MasterHint: Latest version number and id from a master record.
    VersionSelector: Picks the authoritative version per campaign.
"""

import functools
import logging
import math
import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from planpace.schema import CampaignMaster, PlanVersion


logger = logging.getLogger(__name__)

_LEADING_INT_PATTERN = re.compile(r"^\s*([+-]?\d+)")


def normalize_campaign_key(campaign_id: Any) -> str:
    """Case- and whitespace-normalises a campaign identifier."""
    if campaign_id is None:
        return ""
    return str(campaign_id).strip().lower()


def parse_version_number(value: Any) -> Optional[int]:
    """
    Parses a raw version number.

    Strings are read up to the first non-digit, so "3" and "3 (final)"
    both give 3.

    Returns:
        Version number, or None when absent or unparseable.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else None

    match = _LEADING_INT_PATTERN.match(str(value))
    if not match:
        return None
    return int(match.group(1))


def parse_timestamp(value: Any) -> Optional[float]:
    """
    Parses a raw timestamp to POSIX seconds.

    Accepts datetime/date objects, ISO-8601 strings (a trailing "Z" is
    read as UTC) and numeric epoch milliseconds. Naive values are read
    as UTC.

    Returns:
        Seconds since the epoch, or None when absent or unparseable.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) / 1000.0

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        text = str(value).strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()


def compare_present(a: Any, b: Any) -> int:
    """
    Three-way comparison where None loses to any value.

    Returns:
        1 if ``a`` ranks higher, -1 if ``b`` does, 0 on a tie.
    """
    if a is None and b is None:
        return 0
    if a is None:
        return -1
    if b is None:
        return 1
    return (a > b) - (a < b)


@dataclass(frozen=True)
class MasterHint:
    """Latest version number and record id known for a campaign."""

    master_id: Optional[int]
    version_number: int


_Step = Tuple[Callable[[PlanVersion], Any], Callable[[Any, Any], int]]


class VersionSelector:
    """
    Picks the authoritative version of each campaign.

    The chain is an ordered list of (extractor, comparator) pairs, so a
    new tie-break field is one more entry.

    Example:
        >>> selector = VersionSelector()
        >>> chosen = selector.pick_latest_versions(versions, masters)
    """

    def campaign_key(self, version: PlanVersion) -> str:
        """
        Returns the grouping key of a version.

        Falls back to ``master:<id>`` when the campaign id is empty, and
        to "" when neither is available.
        """
        key = normalize_campaign_key(version.campaign_id)
        if key:
            return key
        if version.master_id:
            return f"master:{version.master_id}"
        return ""

    def master_hints(self, masters: Sequence[CampaignMaster]) -> Dict[str, MasterHint]:
        """
        Indexes master records by campaign key, keeping the highest version.
        """
        hints: Dict[str, MasterHint] = {}
        for master in masters:
            key = normalize_campaign_key(master.campaign_id)
            version_number = parse_version_number(master.version_number)
            if not key or version_number is None:
                continue
            existing = hints.get(key)
            if existing is None or version_number > existing.version_number:
                hints[key] = MasterHint(master_id=master.id, version_number=version_number)
        return hints

    def comparator_chain(self, hint: Optional[MasterHint]) -> List[_Step]:
        """
        Builds the ordered tie-break steps for one campaign.

        Args:
            hint: Master record for the campaign, if any.

        Returns:
            List of (extractor, comparator) pairs.
        """
        def matches_master(version: PlanVersion) -> bool:
            if hint is None:
                return False
            if parse_version_number(version.version_number) != hint.version_number:
                return False
            return (
                not version.master_id
                or not hint.master_id
                or version.master_id == hint.master_id
            )

        return [
            (matches_master, compare_present),
            (lambda v: parse_version_number(v.version_number), compare_present),
            (lambda v: parse_timestamp(v.updated_at), compare_present),
            (lambda v: parse_timestamp(v.created_at), compare_present),
            (lambda v: parse_version_number(v.id), compare_present),
        ]

    def compare_versions(
        self,
        a: PlanVersion,
        b: PlanVersion,
        hint: Optional[MasterHint] = None
    ) -> int:
        """
        Compares two versions of the same campaign.

        Returns:
            Positive when ``a`` is more authoritative, negative when ``b``
            is, 0 when every step ties.
        """
        for extractor, comparator in self.comparator_chain(hint):
            result = comparator(extractor(a), extractor(b))
            if result != 0:
                return result
        return 0

    def pick_latest_version(
        self,
        versions: Sequence[PlanVersion],
        masters: Sequence[CampaignMaster] = ()
    ) -> Dict[str, PlanVersion]:
        """
        Picks one version per campaign key.

        Versions with neither a campaign id nor a master id are dropped.
        On a full tie the first version encountered is kept.

        Args:
            versions: All versions, any order, any campaigns.
            masters: Master records pointing at the latest version numbers.

        Returns:
            Chosen version keyed by normalised campaign key.
        """
        hints = self.master_hints(masters)
        groups: Dict[str, List[PlanVersion]] = {}
        for version in versions:
            key = self.campaign_key(version)
            if not key:
                logger.debug("Dropping version %s without campaign or master id", version.id)
                continue
            groups.setdefault(key, []).append(version)

        chosen = {}
        for key, candidates in groups.items():
            hint = hints.get(key)
            sort_key = functools.cmp_to_key(
                lambda a, b, hint=hint: self.compare_versions(a, b, hint)
            )
            chosen[key] = max(candidates, key=sort_key)
        return chosen

    def pick_latest_versions(
        self,
        versions: Sequence[PlanVersion],
        masters: Sequence[CampaignMaster] = ()
    ) -> List[PlanVersion]:
        """
        Returns the chosen versions sorted by campaign key.
        """
        chosen = self.pick_latest_version(versions, masters)
        return [chosen[key] for key in sorted(chosen)]
