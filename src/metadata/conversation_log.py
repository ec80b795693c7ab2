from __future__ import annotations

"""Conversation transcript and metrics storage for chatbot analytics."""

import hashlib
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)


class ConversationLogError(RuntimeError):
    """Raised when conversation logging fails."""
    pass


@dataclass(frozen=True)
class LogMessage:
    """One logged conversation turn."""
    role: str
    content: str
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


@dataclass(frozen=True)
class ConversationRecord:
    """Stored session transcript with running metrics."""
    session_id: str
    messages: list[LogMessage]
    total_messages: int
    user_messages_count: int
    assistant_messages_count: int
    off_topic_redirects_count: int
    ip_hash: str | None
    user_agent: str | None
    start_time: datetime
    end_time: datetime | None = None
    duration_seconds: int | None = None


class ConversationLogger:
    """Persist chat transcripts to a SQL database."""
    def __init__(self, connection_uri: str) -> None:
        """Initialize the logger and ensure tables exist."""
        try:
            from sqlalchemy import (
                Column,
                DateTime,
                Integer,
                MetaData,
                String,
                Table,
                Text,
                create_engine,
            )
            from sqlalchemy.exc import SQLAlchemyError
        except ImportError as exc:  # pragma: no cover - optional dependency
            raise ConversationLogError(
                "sqlalchemy is required to use the conversation log"
            ) from exc

        self._metadata = MetaData()
        self._table = Table(
            "chat_logs",
            self._metadata,
            Column("session_id", String(64), primary_key=True),
            Column("messages", Text, nullable=False),
            Column("total_messages", Integer, nullable=False, default=0),
            Column("user_messages_count", Integer, nullable=False, default=0),
            Column("assistant_messages_count", Integer, nullable=False, default=0),
            Column("off_topic_redirects_count", Integer, nullable=False, default=0),
            Column("ip_hash", String(64), nullable=True),
            Column("user_agent", Text, nullable=True),
            Column("start_time", DateTime(timezone=True), nullable=False),
            Column("end_time", DateTime(timezone=True), nullable=True),
            Column("duration_seconds", Integer, nullable=True),
        )
        try:
            self._engine = create_engine(connection_uri)
            self._metadata.create_all(self._engine)
        except SQLAlchemyError as exc:
            raise ConversationLogError(str(exc)) from exc

    def start_session(
        self,
        session_id: str,
        ip_hash: str | None = None,
        user_agent: str | None = None,
    ) -> None:
        """Create the session row when it does not exist yet."""
        from sqlalchemy.exc import IntegrityError, SQLAlchemyError

        try:
            with self._engine.begin() as conn:
                self._ensure_row(conn, session_id, ip_hash=ip_hash, user_agent=user_agent)
        except IntegrityError:
            logger.debug("conversation_session_exists", extra={"session_id": session_id})
        except SQLAlchemyError as exc:
            raise ConversationLogError(str(exc)) from exc

    def log_message(self, session_id: str, message: LogMessage, is_redirect: bool = False) -> None:
        """Append a message to the session transcript and update metrics.

        The row is read with ``FOR UPDATE`` so concurrent turns on one session
        serialize where the database supports row locks. When two first writes
        race to create the row, the loser retries against the winner's row.
        """
        from sqlalchemy.exc import IntegrityError, SQLAlchemyError

        try:
            try:
                self._append(session_id, message, is_redirect)
            except IntegrityError:
                self._append(session_id, message, is_redirect)
        except SQLAlchemyError as exc:
            raise ConversationLogError(str(exc)) from exc

    def _append(self, session_id: str, message: LogMessage, is_redirect: bool) -> None:
        with self._engine.begin() as conn:
            row = self._ensure_row(conn, session_id, lock=True)
            messages = json.loads(row["messages"])
            messages.append(message.__dict__)
            conn.execute(
                self._table.update()
                .where(self._table.c.session_id == session_id)
                .values(
                    messages=json.dumps(messages, ensure_ascii=True),
                    total_messages=len(messages),
                    user_messages_count=row["user_messages_count"]
                    + (1 if message.role == "user" else 0),
                    assistant_messages_count=row["assistant_messages_count"]
                    + (1 if message.role == "assistant" else 0),
                    off_topic_redirects_count=row["off_topic_redirects_count"]
                    + (1 if is_redirect else 0),
                )
            )

    def end_session(self, session_id: str) -> bool:
        """Record end time and duration; return False for unknown sessions."""
        from sqlalchemy.exc import SQLAlchemyError

        end_time = datetime.now(timezone.utc)
        try:
            with self._engine.begin() as conn:
                row = self._fetch(conn, session_id)
                if row is None:
                    return False
                start_time = _as_utc(row["start_time"])
                conn.execute(
                    self._table.update()
                    .where(self._table.c.session_id == session_id)
                    .values(
                        end_time=end_time,
                        duration_seconds=int((end_time - start_time).total_seconds()),
                    )
                )
        except SQLAlchemyError as exc:
            raise ConversationLogError(str(exc)) from exc
        return True

    def get_session(self, session_id: str) -> ConversationRecord | None:
        """Return the stored transcript for a session."""
        from sqlalchemy.exc import SQLAlchemyError

        try:
            with self._engine.connect() as conn:
                row = self._fetch(conn, session_id)
        except SQLAlchemyError as exc:
            raise ConversationLogError(str(exc)) from exc
        if row is None:
            return None
        return ConversationRecord(
            session_id=row["session_id"],
            messages=[LogMessage(**item) for item in json.loads(row["messages"])],
            total_messages=row["total_messages"],
            user_messages_count=row["user_messages_count"],
            assistant_messages_count=row["assistant_messages_count"],
            off_topic_redirects_count=row["off_topic_redirects_count"],
            ip_hash=row["ip_hash"],
            user_agent=row["user_agent"],
            start_time=_as_utc(row["start_time"]),
            end_time=_as_utc(row["end_time"]) if row["end_time"] else None,
            duration_seconds=row["duration_seconds"],
        )

    def _fetch(self, conn: Any, session_id: str, lock: bool = False) -> dict[str, Any] | None:
        """Load a session row as a mapping."""
        query = self._table.select().where(self._table.c.session_id == session_id)
        if lock:
            query = query.with_for_update()
        result = conn.execute(query).mappings().first()
        return dict(result) if result is not None else None

    def _ensure_row(
        self,
        conn: Any,
        session_id: str,
        ip_hash: str | None = None,
        user_agent: str | None = None,
        lock: bool = False,
    ) -> dict[str, Any]:
        """Return the session row, inserting an empty one first if missing."""
        row = self._fetch(conn, session_id, lock=lock)
        if row is not None:
            return row
        payload = {
            "session_id": session_id,
            "messages": "[]",
            "total_messages": 0,
            "user_messages_count": 0,
            "assistant_messages_count": 0,
            "off_topic_redirects_count": 0,
            "ip_hash": ip_hash,
            "user_agent": user_agent,
            "start_time": datetime.now(timezone.utc),
        }
        conn.execute(self._table.insert().values(**payload))
        return payload


def _as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes returned by SQLite."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def hash_ip(ip: str | None) -> str | None:
    """Hash a client IP into a one-way token for analytics."""
    if not ip:
        return None
    return hashlib.sha256(ip.encode("utf-8")).hexdigest()
