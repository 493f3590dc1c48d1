"""Merge on-call participants from both shifts and turn them into display identities."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, List, Mapping, Optional, Set

logger = logging.getLogger(__name__)

Lookup = Callable[[str], str]


class ResolutionMode(str, Enum):
    EMAIL = "email"
    LOOKUP = "lookup"
    ALIAS = "alias"


@dataclass
class Resolution:
    identities: List[str]
    attempted: int = 0
    failures: int = 0

    @property
    def all_failed(self) -> bool:
        return self.attempted > 0 and self.failures == self.attempted


def merge_participants(early: Iterable[str], late: Iterable[str]) -> Set[str]:
    merged: Set[str] = set(early)
    merged.update(late)
    return merged


def normalise_identifier(identifier: str) -> str:
    """Reduce ``jane.doe+oncall@example.com`` to ``jane.doe``."""

    local = identifier.split("@", 1)[0]
    return local.split("+", 1)[0]


def resolve_aliases(participants: Iterable[str], aliases: Optional[Mapping[str, str]] = None) -> List[str]:
    table = aliases or {}
    resolved: List[str] = []
    for identifier in sorted(participants):
        local = normalise_identifier(identifier)
        resolved.append(table.get(local, local))
    return resolved


def resolve_remote(participants: Iterable[str], lookup: Lookup) -> Resolution:
    """Look each participant up in the chat system, keeping the raw identifier on failure."""

    resolution = Resolution(identities=[])
    for email in sorted(participants):
        resolution.attempted += 1
        try:
            handle = lookup(email)
        except Exception as exc:
            logger.warning("Could not resolve %s to a chat user: %s", email, exc)
            resolution.failures += 1
            handle = email
        else:
            logger.debug("Resolved %s to %s", email, handle)
        resolution.identities.append(handle)
    return resolution


def resolve_participants(
    early: Iterable[str],
    late: Iterable[str],
    mode: ResolutionMode,
    aliases: Optional[Mapping[str, str]] = None,
    lookup: Optional[Lookup] = None,
) -> Resolution:
    participants = merge_participants(early, late)

    if mode is ResolutionMode.EMAIL:
        return Resolution(identities=sorted(participants))
    if mode is ResolutionMode.ALIAS:
        return Resolution(identities=resolve_aliases(participants, aliases))
    if lookup is None:
        raise ValueError("Remote lookup mode needs a lookup callable.")
    return resolve_remote(participants, lookup)
