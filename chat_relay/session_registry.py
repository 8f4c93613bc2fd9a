"""Session registry for the booking chat relay.

Maps a user identity to the set of connection ids (Socket.IO sids) currently
open for that user. A user appears in the registry only while at least one of
their connections is open; the entry is dropped as soon as its set empties.

The registry is process-local and has no persisted backing. It is mutated only
from the event loop, so no locking is needed.
"""
import logging
from typing import Dict, FrozenSet, Iterator, Set

logger = logging.getLogger(__name__)


class SessionRegistry:
    def __init__(self):
        self._sessions: Dict[str, Set[str]] = {}

    def register(self, user_id: str, sid: str) -> None:
        """Add ``sid`` to the user's connection set, creating the entry if absent."""
        self._sessions.setdefault(user_id, set()).add(sid)
        logger.debug(f"Registered {sid} for user {user_id} ({len(self._sessions[user_id])} open)")

    def unregister(self, user_id: str, sid: str) -> bool:
        """Remove ``sid`` from the user's set. Safe to call more than once.

        Returns:
            True if the sid was registered and has been removed.
        """
        sids = self._sessions.get(user_id)
        if sids is None or sid not in sids:
            return False

        sids.discard(sid)
        if not sids:
            del self._sessions[user_id]
            logger.debug(f"User {user_id} has no open connections, entry removed")
        return True

    def lookup(self, user_id: str) -> FrozenSet[str]:
        """Snapshot of the user's open connection ids (empty if none)."""
        return frozenset(self._sessions.get(user_id, ()))

    def users(self) -> Iterator[str]:
        return iter(list(self._sessions))

    def __contains__(self, user_id: str) -> bool:
        return user_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
