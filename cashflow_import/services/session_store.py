from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from ..models.session import ImportSession

"""File-backed import session store.

Sessions live at ``<base>/<user_id>/<session_id>.json``: the storage key is
scoped by user id, so a session created by one user can never be read by
another. Expiry is lazy: ``get`` deletes an expired record and reports it as
missing.
"""

__all__ = [
    "DEFAULT_TTL_MINUTES",
    "ImportSessionManager",
    "ImportSessionNotFoundError",
]

logger = logging.getLogger(__name__)

DEFAULT_TTL_MINUTES = 120


class ImportSessionNotFoundError(Exception):
    """Raised by callers when a session is missing or expired."""

    def __init__(self, session_id: str) -> None:
        super().__init__(
            f"import session {session_id} is unavailable or has expired; please reload the file"
        )
        self.session_id = session_id


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ImportSessionManager:
    """Create / read / update / delete user-scoped import sessions."""

    def __init__(
        self,
        base_directory: Path,
        ttl_minutes: int = DEFAULT_TTL_MINUTES,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.base_directory = Path(base_directory)
        self.ttl = timedelta(minutes=ttl_minutes)
        self._clock = clock

    def _path(self, user_id: int, session_id: str) -> Path | None:
        try:
            canonical = str(uuid.UUID(str(session_id)))
        except ValueError:
            return None
        return self._record_path(user_id, canonical)

    def _record_path(self, user_id: int, canonical_id: str) -> Path:
        return self.base_directory / str(int(user_id)) / f"{canonical_id}.json"

    def _write(self, path: Path, session: ImportSession) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(session.to_dict(), ensure_ascii=False, indent=2), encoding="utf-8")
        tmp.replace(path)

    def create(self, user_id: int, payload: dict[str, Any]) -> ImportSession:
        now = self._clock()
        session = ImportSession(
            id=str(uuid.uuid4()),
            user_id=user_id,
            created_at=now,
            expires_at=now + self.ttl,
            payload=payload,
        )
        self._write(self._record_path(user_id, session.id), session)
        logger.debug("import session created id=%s user=%s", session.id, user_id)
        return session

    def get(self, user_id: int, session_id: str) -> ImportSession | None:
        path = self._path(user_id, session_id)
        if path is None or not path.exists():
            return None
        try:
            session = ImportSession.from_dict(json.loads(path.read_text(encoding="utf-8")))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError):
            logger.warning("unreadable import session record: %s", path)
            return None
        if session.user_id != user_id:
            return None
        if session.is_expired(self._clock()):
            path.unlink(missing_ok=True)
            logger.info("import session expired id=%s user=%s", session_id, user_id)
            return None
        return session

    def require(self, user_id: int, session_id: str) -> ImportSession:
        session = self.get(user_id, session_id)
        if session is None:
            raise ImportSessionNotFoundError(session_id)
        return session

    def update(
        self,
        user_id: int,
        session_id: str,
        mutator: Callable[[dict[str, Any]], dict[str, Any] | None],
    ) -> ImportSession | None:
        """Apply ``mutator`` to the payload; a None return keeps the (mutated) payload."""
        session = self.get(user_id, session_id)
        if session is None:
            return None
        payload = dict(session.payload)
        payload = mutator(payload) or payload
        updated = session.with_payload(payload, self._clock())
        self._write(self._record_path(user_id, session.id), updated)
        return updated

    def delete(self, user_id: int, session_id: str) -> None:
        path = self._path(user_id, session_id)
        if path is not None:
            path.unlink(missing_ok=True)
