"""Match LMS groups to partners whose group does not follow the naming convention.

Only partners with neither an explicit link nor a ``prefix + account_name``
group are matched, and only against groups nobody has claimed yet. Each group
is compared in three passes: equal comparable names, then the literal name
with the prefix stripped, then fuzzy similarity. System groups such as
"All Partners" or an admin group never match.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import StrEnum
from logging import getLogger
from typing import TYPE_CHECKING, Final

from thefuzz import fuzz

from partnersync.domain.model import normalize_name

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from partnersync.domain.model import Group, GroupId, Partner, PartnerId

log = getLogger(__name__)

DEFAULT_MATCH_THRESHOLD: Final[float] = 0.85
DEFAULT_SUGGESTION_THRESHOLD: Final[float] = 0.5
PREFIX_MATCH_SCORE: Final[float] = 0.99
SYSTEM_GROUP_MARKERS: Final[tuple[str, ...]] = ("all partner", "all user", "admin", "internal")

_PARENTHETICAL = re.compile(r"\(.*?\)")
_PUNCTUATION = re.compile(r"[^\w\s]")
_LEGAL_SUFFIX = re.compile(
    r"\b(inc|llc|ltd|pty|gmbh|sa|ag|co|corp|corporation|company|limited|incorporated)\b"
)
_WHITESPACE = re.compile(r"\s+")


class MatchType(StrEnum):
    EXACT = "exact"
    PREFIX = "prefix"
    FUZZY = "fuzzy"


@dataclass(slots=True, frozen=True)
class GroupMatch:
    group: Group
    partner_id: PartnerId
    score: float
    match_type: MatchType


@dataclass(slots=True, frozen=True)
class GroupSuggestion:
    """A group left unmatched, with its closest partner for manual review."""

    group: Group
    best: GroupMatch | None


@dataclass(slots=True, kw_only=True)
class GroupMatching:
    matches: list[GroupMatch] = field(default_factory=list["GroupMatch"])
    suggestions: list[GroupSuggestion] = field(default_factory=list["GroupSuggestion"])
    system_group_ids: list[GroupId] = field(default_factory=list["GroupId"])


def comparable_name(name: str | None, prefix: str) -> str:
    """Lowercase ``name`` and drop the prefix, parentheticals, punctuation and legal suffixes."""

    text = _strip_prefix(name, prefix)
    text = _PARENTHETICAL.sub(" ", text)
    text = _PUNCTUATION.sub(" ", text)
    text = _LEGAL_SUFFIX.sub(" ", text)
    return _WHITESPACE.sub(" ", text).strip()


def similarity(left: str, right: str) -> float:
    """Score two comparable names between 0 and 1."""

    if left == right:
        return 1.0 if left else 0.0
    if not left or not right:
        return 0.0
    if left in right or right in left:
        return min(len(left), len(right)) / max(len(left), len(right))
    return fuzz.ratio(left, right) / 100


def is_system_group(name: str | None) -> bool:
    normalized = normalize_name(name)
    return normalized == "test" or any(marker in normalized for marker in SYSTEM_GROUP_MARKERS)


def best_partner_for(
    group: Group,
    partners: Iterable[Partner],
    *,
    prefix: str,
    threshold: float = DEFAULT_MATCH_THRESHOLD,
) -> GroupMatch | None:
    group_name = comparable_name(group.name, prefix)
    literal = _strip_prefix(group.name, prefix)
    best: GroupMatch | None = None
    for partner in partners:
        if not partner.id or not partner.account_name:
            continue
        partner_name = comparable_name(partner.account_name, prefix)
        if group_name and group_name == partner_name:
            return GroupMatch(group=group, partner_id=partner.id, score=1.0, match_type=MatchType.EXACT)
        if literal and literal == normalize_name(partner.account_name):
            return GroupMatch(
                group=group,
                partner_id=partner.id,
                score=PREFIX_MATCH_SCORE,
                match_type=MatchType.PREFIX,
            )
        score = similarity(group_name, partner_name)
        if score >= threshold and (best is None or score > best.score):
            best = GroupMatch(group=group, partner_id=partner.id, score=score, match_type=MatchType.FUZZY)
    return best


def match_groups_to_partners(
    partners: Sequence[Partner],
    groups: Iterable[Group],
    *,
    prefix: str,
    threshold: float = DEFAULT_MATCH_THRESHOLD,
    suggestion_threshold: float = DEFAULT_SUGGESTION_THRESHOLD,
) -> GroupMatching:
    """Match each of ``groups`` to at most one of ``partners``.

    A partner may receive several matches here; the caller decides which one
    wins. Groups below ``threshold`` become suggestions carrying their closest
    partner at or above ``suggestion_threshold``.
    """

    result = GroupMatching()
    if not partners:
        return result
    for group in groups:
        if not group.id:
            continue
        if is_system_group(group.name):
            result.system_group_ids.append(group.id)
            continue
        match = best_partner_for(group, partners, prefix=prefix, threshold=threshold)
        if match is not None:
            result.matches.append(match)
            continue
        closest = best_partner_for(group, partners, prefix=prefix, threshold=suggestion_threshold)
        result.suggestions.append(GroupSuggestion(group=group, best=closest))

    log.info(
        f"Matched {len(result.matches)} group(s) to partners by name, "
        f"{len(result.suggestions)} left for review, "
        f"{len(result.system_group_ids)} system group(s) skipped"
    )
    return result


def _strip_prefix(name: str | None, prefix: str) -> str:
    text = normalize_name(name)
    normalized_prefix = normalize_name(prefix)
    if normalized_prefix and text.startswith(normalized_prefix):
        return text[len(normalized_prefix) :].strip()
    return text
