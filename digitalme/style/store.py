"""
In-memory profile store with per-profile serialization.

Each profile lives in a ``ProfileEntry`` alongside the samples it was
merged from (needed for full re-merges) and an ``asyncio.Lock``. Every
mutating operation runs under that lock, so concurrent refinement batches
for one profile apply one at a time in submission order, while different
profiles proceed independently. ``commit`` additionally checks the
profile version so a stale write is rejected instead of silently
overwriting a newer one.

Entries expire ``ttl_seconds`` after their last access; locked entries
are never evicted.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import AsyncIterator, Callable, Dict, List, Optional

from digitalme.exceptions import ProfileNotFoundError, ProfileVersionConflictError
from digitalme.models import StyleProfile, StyleSample
from digitalme.utils import utc_now

logger = logging.getLogger("ProfileStore")


@dataclass
class ProfileEntry:
    profile: StyleProfile
    samples: List[StyleSample] = field(default_factory=list)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    expires_at: Optional[datetime] = None


class ProfileStore:
    """
    Args:
        ttl_seconds: Idle lifetime of an entry; ``0`` disables expiry.
        clock: Source of the current time (injected by tests).
    """

    def __init__(
        self,
        ttl_seconds: int = 3600,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.ttl = timedelta(seconds=ttl_seconds)
        self.clock = clock
        self._entries: Dict[str, ProfileEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, profile_id: object) -> bool:
        return profile_id in self._entries

    def _touch(self, entry: ProfileEntry) -> None:
        entry.expires_at = self.clock() + self.ttl if self.ttl else None

    def create(
        self, profile: StyleProfile, samples: Optional[List[StyleSample]] = None
    ) -> ProfileEntry:
        """Register a profile. Replaces any entry with the same id."""
        entry = ProfileEntry(profile=copy.deepcopy(profile), samples=list(samples or []))
        self._touch(entry)
        self._entries[profile.profile_id] = entry
        logger.debug("Stored profile %s v%d", profile.profile_id, profile.version)
        return entry

    def entry(self, profile_id: str) -> ProfileEntry:
        """
        Raises:
            ProfileNotFoundError: If ``profile_id`` is unknown.
        """
        entry = self._entries.get(profile_id)
        if entry is None:
            raise ProfileNotFoundError(profile_id)
        self._touch(entry)
        return entry

    def get(self, profile_id: str) -> StyleProfile:
        """Return a copy of the stored profile; callers cannot mutate the store."""
        return copy.deepcopy(self.entry(profile_id).profile)

    @asynccontextmanager
    async def lock(self, profile_id: str) -> AsyncIterator[ProfileEntry]:
        """
        Hold the profile's lock for the duration of the block.

        Usage::

            async with store.lock(pid) as entry:
                updated = work_on(copy.deepcopy(entry.profile))
                store.commit(entry, updated, expected_version=entry.profile.version)
        """
        entry = self.entry(profile_id)
        async with entry.lock:
            # The entry may have been replaced or deleted while waiting.
            yield self.entry(profile_id)

    def commit(
        self,
        entry: ProfileEntry,
        profile: StyleProfile,
        expected_version: int,
        samples: Optional[List[StyleSample]] = None,
    ) -> None:
        """
        Replace the entry's profile if it is still at ``expected_version``.

        Raises:
            ProfileVersionConflictError: If another writer got there first.
        """
        current = entry.profile.version
        if current != expected_version:
            raise ProfileVersionConflictError(profile.profile_id, expected_version, current)
        entry.profile = profile
        if samples is not None:
            entry.samples = list(samples)
        self._touch(entry)
        logger.debug("Committed profile %s v%d -> v%d", profile.profile_id, current, profile.version)

    def delete(self, profile_id: str) -> None:
        if self._entries.pop(profile_id, None) is None:
            raise ProfileNotFoundError(profile_id)

    def evict_expired(self, now: Optional[datetime] = None) -> List[str]:
        """Drop idle entries and return their ids. Locked entries are kept."""
        now = now or self.clock()
        expired = [
            pid
            for pid, entry in self._entries.items()
            if entry.expires_at is not None
            and entry.expires_at <= now
            and not entry.lock.locked()
        ]
        for pid in expired:
            del self._entries[pid]
        if expired:
            logger.info("Evicted %d idle profile(s)", len(expired))
        return expired


__all__ = [
    "ProfileEntry",
    "ProfileStore",
]
