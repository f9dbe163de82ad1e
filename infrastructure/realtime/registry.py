"""In-process connection registry.

Authoritative map of live connection id -> ConnectionSession for this
process. A room is not stored anywhere: it is the set of sessions whose
``room`` field carries its name, so an empty room needs no cleanup.

Mutations are plain synchronous dict operations; callers running on the
event loop see them immediately. The session coordinator serializes the
membership-changing sequences that must not interleave.
"""
from __future__ import annotations

import dataclasses
from typing import Dict, List, Optional

from domain.chat.entity import ConnectionSession


_PATCHABLE_FIELDS = frozenset({"username", "room", "push_token"})


class ConnectionRegistry:
    def __init__(self) -> None:
        # connection_id -> session, in registration order
        self._sessions: Dict[str, ConnectionSession] = {}

    def create(self, connection_id: str) -> ConnectionSession:
        session = self._sessions.get(connection_id)
        if session is None:
            session = ConnectionSession(connection_id=connection_id)
            self._sessions[connection_id] = session
        return dataclasses.replace(session)

    def upsert(self, connection_id: str, **patch) -> ConnectionSession:
        """Merge ``patch`` into the session, creating it if absent."""
        unknown = set(patch) - _PATCHABLE_FIELDS
        if unknown:
            raise TypeError(f"unknown session fields: {sorted(unknown)}")
        session = self._sessions.get(connection_id)
        if session is None:
            session = ConnectionSession(connection_id=connection_id)
            self._sessions[connection_id] = session
        for name, value in patch.items():
            setattr(session, name, value)
        return dataclasses.replace(session)

    def remove(self, connection_id: str) -> Optional[ConnectionSession]:
        return self._sessions.pop(connection_id, None)

    def get(self, connection_id: str) -> Optional[ConnectionSession]:
        session = self._sessions.get(connection_id)
        return dataclasses.replace(session) if session is not None else None

    def members_of(self, room: str) -> List[ConnectionSession]:
        """Point-in-time snapshot of the sessions currently in ``room``."""
        return [dataclasses.replace(s) for s in self._sessions.values() if s.room == room]

    def rooms(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for s in self._sessions.values():
            if s.room is not None:
                counts[s.room] = counts.get(s.room, 0) + 1
        return counts

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._sessions
