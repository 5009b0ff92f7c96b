"""
Repository pattern for data access.

Handles database operations for profiles, question usage and chat history.
"""

import sqlite3
import time
from datetime import datetime
from typing import List, Optional, Sequence

from .db import DEFAULT_DB_PATH, get_connection
from .models import ChatMessage, ChatSession, Profile, UsageRecord

# PostgreSQL-compatible SQLSTATE codes so callers can match on error shape
FOREIGN_KEY_VIOLATION = "23503"
UNIQUE_VIOLATION = "23505"
CHECK_VIOLATION = "23514"
INTEGRITY_VIOLATION = "23000"

SESSIONS_TABLE = "chat_sessions"
MESSAGES_TABLE = "chat_messages"


class StoreError(Exception):
    """Storage failure with an identifiable code and details."""

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details


def _translate_integrity_error(error: sqlite3.IntegrityError, parent_table: Optional[str] = None) -> StoreError:
    """Map a SQLite integrity failure to a coded StoreError."""
    message = str(error)
    lowered = message.lower()
    if "foreign key" in lowered:
        details = None
        if parent_table:
            details = f'Key is not present in table "{parent_table}".'
        return StoreError(message, code=FOREIGN_KEY_VIOLATION, details=details)
    if "unique" in lowered:
        return StoreError(message, code=UNIQUE_VIOLATION)
    if "check" in lowered:
        return StoreError(message, code=CHECK_VIOLATION)
    return StoreError(message, code=INTEGRITY_VIOLATION)


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create all tables if they don't exist.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS profiles (
                id TEXT PRIMARY KEY,
                email TEXT,
                role TEXT,
                professional_role TEXT,
                specialty TEXT,
                title TEXT
            );
            CREATE TABLE IF NOT EXISTS question_usage (
                user_id TEXT PRIMARY KEY,
                questions_count INTEGER NOT NULL DEFAULT 0
            );
            CREATE TABLE IF NOT EXISTS chat_sessions (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                title TEXT NOT NULL,
                region TEXT NOT NULL DEFAULT 'International',
                country TEXT NOT NULL DEFAULT 'International',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );
            CREATE TABLE IF NOT EXISTS chat_messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                session_id TEXT NOT NULL REFERENCES chat_sessions(id),
                user_id TEXT NOT NULL,
                role TEXT NOT NULL CHECK (role IN ('user', 'model')),
                content TEXT NOT NULL,
                created_at TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_chat_messages_session
                ON chat_messages(session_id, id);
        """)
        conn.commit()
    finally:
        conn.close()


class ChatRepository:
    """Repository for profiles, question usage and chat history.

    Every method opens its own connection, so one instance can be shared
    across worker threads.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    def ping(self) -> float:
        """Run a trivial query and return its latency in milliseconds."""
        conn = get_connection(self.db_path)
        try:
            start = time.perf_counter()
            conn.execute("SELECT COUNT(*) FROM chat_sessions").fetchone()
            return (time.perf_counter() - start) * 1000
        finally:
            conn.close()

    # Profiles

    def get_profile(self, user_id: str) -> Optional[Profile]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT id, email, role, professional_role, specialty, title "
                "FROM profiles WHERE id = ?",
                (user_id,),
            ).fetchone()
            if row is None:
                return None
            return Profile(*row)
        finally:
            conn.close()

    def save_profile(self, profile: Profile) -> None:
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                INSERT INTO profiles (id, email, role, professional_role, specialty, title)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    email = excluded.email,
                    role = excluded.role,
                    professional_role = excluded.professional_role,
                    specialty = excluded.specialty,
                    title = excluded.title
            """, (
                profile.id,
                profile.email,
                profile.role,
                profile.professional_role,
                profile.specialty,
                profile.title,
            ))
            conn.commit()
        finally:
            conn.close()

    # Question usage

    def get_usage(self, user_id: str) -> Optional[UsageRecord]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT user_id, questions_count FROM question_usage WHERE user_id = ?",
                (user_id,),
            ).fetchone()
            if row is None:
                return None
            return UsageRecord(user_id=row[0], questions_count=row[1])
        finally:
            conn.close()

    def insert_usage(self, user_id: str, questions_count: int) -> None:
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                "INSERT INTO question_usage (user_id, questions_count) VALUES (?, ?)",
                (user_id, questions_count),
            )
            conn.commit()
        except sqlite3.IntegrityError as e:
            raise _translate_integrity_error(e) from e
        finally:
            conn.close()

    def update_usage(self, user_id: str, questions_count: int) -> None:
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                "UPDATE question_usage SET questions_count = ? WHERE user_id = ?",
                (questions_count, user_id),
            )
            conn.commit()
        finally:
            conn.close()

    # Chat sessions

    def get_session(self, session_id: str) -> Optional[ChatSession]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT id, user_id, title, region, country, created_at, updated_at "
                "FROM chat_sessions WHERE id = ?",
                (session_id,),
            ).fetchone()
            if row is None:
                return None
            return ChatSession(
                id=row[0],
                user_id=row[1],
                title=row[2],
                region=row[3],
                country=row[4],
                created_at=datetime.fromisoformat(row[5]),
                updated_at=datetime.fromisoformat(row[6]),
            )
        finally:
            conn.close()

    def create_session(self, session: ChatSession) -> None:
        now = datetime.now()
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                INSERT INTO chat_sessions
                (id, user_id, title, region, country, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                session.id,
                session.user_id,
                session.title,
                session.region,
                session.country,
                (session.created_at or now).isoformat(),
                (session.updated_at or now).isoformat(),
            ))
            conn.commit()
        except sqlite3.IntegrityError as e:
            raise _translate_integrity_error(e) from e
        finally:
            conn.close()

    def touch_session(self, session_id: str) -> None:
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                "UPDATE chat_sessions SET updated_at = ? WHERE id = ?",
                (datetime.now().isoformat(), session_id),
            )
            conn.commit()
        finally:
            conn.close()

    def update_session_title(self, session_id: str, title: str) -> None:
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                "UPDATE chat_sessions SET title = ? WHERE id = ?",
                (title, session_id),
            )
            conn.commit()
        finally:
            conn.close()

    # Chat messages

    def insert_messages(self, messages: Sequence[ChatMessage]) -> None:
        """Insert messages atomically, in the given order.

        Raises:
            StoreError: With code FOREIGN_KEY_VIOLATION naming the sessions
                table when the parent session does not exist
        """
        if not messages:
            return

        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN TRANSACTION")
            for message in messages:
                conn.execute("""
                    INSERT INTO chat_messages
                    (session_id, user_id, role, content, created_at)
                    VALUES (?, ?, ?, ?, ?)
                """, (
                    message.session_id,
                    message.user_id,
                    message.role,
                    message.content,
                    (message.created_at or datetime.now()).isoformat(),
                ))
            conn.commit()
        except sqlite3.IntegrityError as e:
            conn.rollback()
            raise _translate_integrity_error(e, parent_table=SESSIONS_TABLE) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def list_messages(self, session_id: str, limit: int = 200) -> List[ChatMessage]:
        """Messages of a session in insertion order."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("""
                SELECT id, session_id, user_id, role, content, created_at
                FROM chat_messages
                WHERE session_id = ?
                ORDER BY id ASC
                LIMIT ?
            """, (session_id, limit))
            return [
                ChatMessage(
                    id=row[0],
                    session_id=row[1],
                    user_id=row[2],
                    role=row[3],
                    content=row[4],
                    created_at=datetime.fromisoformat(row[5]),
                )
                for row in cursor.fetchall()
            ]
        finally:
            conn.close()
