"""
Indexed Session Store: Canonical Records + Secondary Indexes

Owns the primary session map and two secondary indexes:
    by_group       : group_key       -> {session_id, ...}
    by_target_ref  : normalized_ref  -> {session_id, ...}

Invariants:
    - A session id is in both indexes iff it is in the primary map
    - Index buckets are never empty (an emptied bucket is deleted, so
      "key in index" is a valid membership test)
    - All three maps change under one lock, so readers never observe a
      partial update

The store performs no I/O and makes no timing decisions. It is an
explicitly owned object: every engine component receives it as a
dependency, and each test builds a fresh one.
"""

from __future__ import annotations

import threading
from typing import Iterable, Iterator, Optional

from cadence.session.model import Session
from cadence.session.state_machine import SessionState


class IndexedSessionStore:
    """
    In-memory session repository with O(1) secondary lookups.

    Usage:
        store = IndexedSessionStore()
        store.put(session)

        ids = store.list_by_group("G1")
        store.remove(session.session_id)

    Thread Safety:
        All methods take an internal re-entrant lock. Returned
        collections are copies and may be iterated freely.
    """

    __slots__ = ("_sessions", "_order", "_sequence", "_by_group", "_by_target_ref", "_lock")

    def __init__(self) -> None:
        # dicts preserve insertion order: all() lists sessions in creation order
        self._sessions: dict[str, Session] = {}
        self._order: dict[str, int] = {}
        self._sequence = 0
        self._by_group: dict[str, set[str]] = {}
        self._by_target_ref: dict[str, set[str]] = {}
        self._lock = threading.RLock()

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------
    def put(self, session: Session) -> None:
        """
        Insert or replace a record and index it.

        Idempotent for the same id. A replacement whose keys changed is
        first unlinked from its old buckets.
        """
        with self._lock:
            sid = session.session_id
            existing = self._sessions.get(sid)
            if existing is not None and existing is not session:
                self._unlink(sid, existing.group_key, existing.normalized_ref)

            if sid not in self._order:
                self._sequence += 1
                self._order[sid] = self._sequence
            self._sessions[sid] = session
            self._by_group.setdefault(session.group_key, set()).add(sid)
            self._by_target_ref.setdefault(session.normalized_ref, set()).add(sid)

    def remove(self, session_id: str) -> bool:
        """
        Remove a record from both indexes, then from the primary map.

        Returns:
            True if the session existed
        """
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return False
            self._unlink(session_id, session.group_key, session.normalized_ref)
            del self._sessions[session_id]
            del self._order[session_id]
            return True

    def _unlink(self, session_id: str, group_key: str, normalized_ref: str) -> None:
        for index, key in (
            (self._by_group, group_key),
            (self._by_target_ref, normalized_ref),
        ):
            bucket = index.get(key)
            if bucket is None:
                continue
            bucket.discard(session_id)
            if not bucket:
                del index[key]

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------
    def get(self, session_id: str) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(session_id)

    def list_by_group(self, group_key: str) -> set[str]:
        with self._lock:
            return set(self._by_group.get(group_key, ()))

    def list_by_target_ref(self, normalized_ref: str) -> set[str]:
        with self._lock:
            return set(self._by_target_ref.get(normalized_ref, ()))

    def all(self) -> list[Session]:
        """All records in insertion order."""
        with self._lock:
            return list(self._sessions.values())

    def get_many(self, session_ids: Iterable[str]) -> list[Session]:
        """Resolve ids to records, in insertion order, skipping unknown ids."""
        with self._lock:
            known = [sid for sid in set(session_ids) if sid in self._sessions]
            known.sort(key=self._order.__getitem__)
            return [self._sessions[sid] for sid in known]

    def group_keys(self) -> list[str]:
        with self._lock:
            return list(self._by_group)

    def target_refs(self) -> list[str]:
        with self._lock:
            return list(self._by_target_ref)

    def has_group(self, group_key: str) -> bool:
        with self._lock:
            return group_key in self._by_group

    def has_target_ref(self, normalized_ref: str) -> bool:
        with self._lock:
            return normalized_ref in self._by_target_ref

    def count_by_state(self) -> dict[SessionState, int]:
        """Session count per state (all states present, zero-filled)."""
        with self._lock:
            counts = {state: 0 for state in SessionState}
            for session in self._sessions.values():
                counts[session.state] += 1
            return counts

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __iter__(self) -> Iterator[Session]:
        return iter(self.all())
