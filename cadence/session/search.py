"""
Search / Lookup Surface over the Indexed Session Store

Read-only projections: nothing here mutates the store or triggers a
transition.

Lookup paths:
    list_sessions(search)   → full scan, optional substring filter over
                              target ref, group key and id
    find_by_group(key)      → exact group index bucket
    search(term, GROUP)     → exact bucket + substring over group keys
    search(term, TARGET_REF)→ substring over normalized target refs
    search(term, ANY)       → both of the above + substring over ids
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional

from cadence.core.errors import InvalidInputError
from cadence.core.types import Result, Ok, Err
from cadence.session.model import SessionView
from cadence.session.store import IndexedSessionStore

logger = logging.getLogger(__name__)


class SearchKind(Enum):
    """Which index a search term is matched against."""
    GROUP = "group"
    TARGET_REF = "target_ref"
    ANY = "all"

    @classmethod
    def parse(cls, raw: Optional[str]) -> SearchKind:
        """
        Parse a transport-level kind; unknown or missing values mean ANY.

        Accepts the legacy aliases "postId" and "url".
        """
        if not raw:
            return cls.ANY
        normalized = raw.strip().lower()
        aliases = {
            "group": cls.GROUP,
            "group_key": cls.GROUP,
            "postid": cls.GROUP,
            "target_ref": cls.TARGET_REF,
            "targetref": cls.TARGET_REF,
            "url": cls.TARGET_REF,
        }
        return aliases.get(normalized, cls.ANY)


class SessionSearch:
    """
    Query service over an IndexedSessionStore.

    Usage:
        search = SessionSearch(store)
        views = search.find_by_group("G1")
        result = search.search("example.com", SearchKind.TARGET_REF)
    """

    __slots__ = ("_store",)

    def __init__(self, store: IndexedSessionStore) -> None:
        self._store = store

    def list_sessions(self, search: Optional[str] = None) -> list[SessionView]:
        sessions = self._store.all()
        if search:
            needle = search.lower()
            sessions = [
                s for s in sessions
                if needle in s.normalized_ref
                or search in s.group_key
                or needle in s.session_id.lower()
            ]
            logger.info(
                "Session list filtered with term %r: %d results", search, len(sessions),
            )
        return [s.view() for s in sessions]

    def find_by_group(self, group_key: str) -> list[SessionView]:
        ids = self._store.list_by_group(group_key)
        views = [s.view() for s in self._store.get_many(ids)]
        logger.info("Found %d sessions for group %s", len(views), group_key)
        return views

    def search(
        self,
        term: str,
        kind: SearchKind = SearchKind.ANY,
    ) -> Result[list[SessionView], InvalidInputError]:
        """
        Index-backed search.

        Group keys are matched case-sensitively (they are opaque ids);
        target refs and session ids case-insensitively.
        """
        if not term or not term.strip():
            return Err(InvalidInputError.search_term())

        needle = term.lower()
        matched: set[str] = set()

        if kind in (SearchKind.GROUP, SearchKind.ANY):
            matched |= self._store.list_by_group(term)
            for group_key in self._store.group_keys():
                if term in group_key:
                    matched |= self._store.list_by_group(group_key)

        if kind in (SearchKind.TARGET_REF, SearchKind.ANY):
            for ref in self._store.target_refs():
                if needle in ref:
                    matched |= self._store.list_by_target_ref(ref)

        if kind is SearchKind.ANY:
            for session in self._store.all():
                if needle in session.session_id.lower():
                    matched.add(session.session_id)

        views = [s.view() for s in self._store.get_many(matched)]
        logger.info(
            "Search performed with term %r, kind %s: %d results",
            term, kind.value, len(views),
        )
        return Ok(views)
