"""Session persistence.

The repository stores opaque session blobs (the JSON form of
:class:`~taletree.models.session.Session`) keyed by session id, plus a
metadata index and a pointer to the last active session.  It knows nothing
about graph semantics.
"""

from __future__ import annotations

import copy
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from taletree.db.tables import DBAppMeta, DBStorySession
from taletree.models.session import SessionMeta

log = logging.getLogger(__name__)

SessionBlob = Dict[str, Any]

_ACTIVE_SESSION_KEY = "active_session_id"


def _parse_time(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        # fromisoformat only accepts a trailing "Z" from 3.11 on
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands datetimes back naive
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


@runtime_checkable
class SessionRepository(Protocol):
    async def save(self, session_id: str, blob: SessionBlob) -> None: ...

    async def load(self, session_id: str) -> Optional[SessionBlob]: ...

    async def list(self) -> List[SessionMeta]: ...

    async def delete(self, session_id: str) -> None: ...

    async def get_active(self) -> Optional[str]: ...

    async def set_active(self, session_id: Optional[str]) -> None: ...


class MemorySessionRepository:
    """Dict-backed repository for tests and throwaway servers."""

    def __init__(self) -> None:
        self._blobs: Dict[str, SessionBlob] = {}
        self._active: Optional[str] = None

    async def save(self, session_id: str, blob: SessionBlob) -> None:
        self._blobs[session_id] = copy.deepcopy(blob)

    async def load(self, session_id: str) -> Optional[SessionBlob]:
        blob = self._blobs.get(session_id)
        return copy.deepcopy(blob) if blob is not None else None

    async def list(self) -> List[SessionMeta]:
        metas = [
            SessionMeta(
                id=sid,
                title=blob.get("title", ""),
                created_at=_parse_time(blob.get("created_at")),
                updated_at=_parse_time(blob.get("updated_at")),
            )
            for sid, blob in self._blobs.items()
        ]
        return sorted(metas, key=lambda m: m.updated_at, reverse=True)

    async def delete(self, session_id: str) -> None:
        self._blobs.pop(session_id, None)
        if self._active == session_id:
            self._active = None

    async def get_active(self) -> Optional[str]:
        return self._active

    async def set_active(self, session_id: Optional[str]) -> None:
        self._active = session_id


class SqlSessionRepository:
    """Repository over the ``story_sessions`` / ``app_meta`` tables."""

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]):
        self._sessionmaker = sessionmaker

    async def save(self, session_id: str, blob: SessionBlob) -> None:
        async with self._sessionmaker() as db:
            row = await db.get(DBStorySession, session_id)
            if row is None:
                row = DBStorySession(
                    id=session_id,
                    created_at=_parse_time(blob.get("created_at")),
                )
                db.add(row)
            row.title = blob.get("title", "")
            row.blob_json = json.dumps(blob, ensure_ascii=False)
            row.updated_at = _parse_time(blob.get("updated_at"))
            await db.commit()
        log.debug("Saved session %s", session_id)

    async def load(self, session_id: str) -> Optional[SessionBlob]:
        async with self._sessionmaker() as db:
            row = await db.get(DBStorySession, session_id)
            if row is None:
                return None
            return json.loads(row.blob_json)

    async def list(self) -> List[SessionMeta]:
        async with self._sessionmaker() as db:
            result = await db.execute(
                select(
                    DBStorySession.id,
                    DBStorySession.title,
                    DBStorySession.created_at,
                    DBStorySession.updated_at,
                ).order_by(DBStorySession.updated_at.desc())
            )
            return [
                SessionMeta(
                    id=row.id,
                    title=row.title,
                    created_at=_as_utc(row.created_at),
                    updated_at=_as_utc(row.updated_at),
                )
                for row in result
            ]

    async def delete(self, session_id: str) -> None:
        async with self._sessionmaker() as db:
            await db.execute(delete(DBStorySession).where(DBStorySession.id == session_id))
            meta = await db.get(DBAppMeta, _ACTIVE_SESSION_KEY)
            if meta is not None and meta.value == session_id:
                await db.delete(meta)
            await db.commit()
        log.info("Deleted session %s", session_id)

    async def get_active(self) -> Optional[str]:
        async with self._sessionmaker() as db:
            meta = await db.get(DBAppMeta, _ACTIVE_SESSION_KEY)
            return meta.value if meta is not None and meta.value else None

    async def set_active(self, session_id: Optional[str]) -> None:
        async with self._sessionmaker() as db:
            meta = await db.get(DBAppMeta, _ACTIVE_SESSION_KEY)
            if session_id is None:
                if meta is not None:
                    await db.delete(meta)
            elif meta is None:
                db.add(DBAppMeta(key=_ACTIVE_SESSION_KEY, value=session_id))
            else:
                meta.value = session_id
            await db.commit()
