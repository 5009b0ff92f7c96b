"""
Unit tests for storage layer.

Tests schema creation, insertion and retrieval operations.
"""

import os
import tempfile

import pytest

from ai_chat_guard.storage.db import get_connection
from ai_chat_guard.storage.models import ChatMessage, ChatSession, Profile, UsageRecord
from ai_chat_guard.storage.repository import (
    CHECK_VIOLATION,
    FOREIGN_KEY_VIOLATION,
    UNIQUE_VIOLATION,
    ChatRepository,
    StoreError,
    initialize_schema,
)


class TestStorageSchema:
    """Test database schema creation and structure."""

    def test_schema_creation(self):
        """Verify tables are created correctly."""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            initialize_schema(db_path)
            initialize_schema(db_path)  # idempotent

            conn = get_connection(db_path)
            try:
                cursor = conn.execute(
                    "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name"
                )
                tables = {row[0] for row in cursor.fetchall()}
                assert {"profiles", "question_usage", "chat_sessions", "chat_messages"} <= tables

                cursor = conn.execute("PRAGMA table_info(chat_messages)")
                column_names = [col[1] for col in cursor.fetchall()]
                assert column_names == [
                    'id', 'session_id', 'user_id', 'role', 'content', 'created_at'
                ]
            finally:
                conn.close()


class TestChatRepository:

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        initialize_schema(self.db_path)
        self.repository = ChatRepository(self.db_path)

    def teardown_method(self):
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _session(self, session_id="s1"):
        return ChatSession(id=session_id, user_id="user-1", title="Oct 19, 03:05 PM")

    def _turn(self, session_id="s1"):
        return [
            ChatMessage(session_id=session_id, user_id="user-1", role="user", content="Q"),
            ChatMessage(session_id=session_id, user_id="user-1", role="model", content="A"),
        ]

    def test_ping(self):
        assert self.repository.ping() >= 0

    def test_profile_round_trip_and_update(self):
        assert self.repository.get_profile("user-1") is None

        self.repository.save_profile(Profile(id="user-1", role="user", specialty="Cardiology"))
        self.repository.save_profile(Profile(id="user-1", role="admin", specialty="Cardiology"))

        profile = self.repository.get_profile("user-1")
        assert profile.role == "admin"
        assert profile.specialty == "Cardiology"

    def test_usage_insert_and_update(self):
        assert self.repository.get_usage("user-1") is None

        self.repository.insert_usage("user-1", 1)
        self.repository.update_usage("user-1", 2)

        assert self.repository.get_usage("user-1") == UsageRecord("user-1", 2)

    def test_duplicate_usage_insert_is_coded(self):
        self.repository.insert_usage("user-1", 1)

        with pytest.raises(StoreError) as excinfo:
            self.repository.insert_usage("user-1", 1)
        assert excinfo.value.code == UNIQUE_VIOLATION

    def test_session_create_touch_and_title(self):
        self.repository.create_session(self._session())
        before = self.repository.get_session("s1")

        self.repository.touch_session("s1")
        self.repository.update_session_title("s1", "New title")

        after = self.repository.get_session("s1")
        assert after.title == "New title"
        assert after.updated_at >= before.updated_at
        assert after.region == "International"

    def test_messages_in_insertion_order(self):
        self.repository.create_session(self._session())
        self.repository.insert_messages(self._turn())
        self.repository.insert_messages(self._turn())

        messages = self.repository.list_messages("s1")
        assert [m.role for m in messages] == ["user", "model", "user", "model"]
        assert messages[0].id < messages[1].id

    def test_missing_session_error_names_sessions_table(self):
        with pytest.raises(StoreError) as excinfo:
            self.repository.insert_messages(self._turn("ghost"))

        assert excinfo.value.code == FOREIGN_KEY_VIOLATION
        assert 'table "chat_sessions"' in excinfo.value.details
        assert self.repository.list_messages("ghost") == []

    def test_turn_insert_is_atomic(self):
        self.repository.create_session(self._session())
        bad_turn = [
            ChatMessage(session_id="s1", user_id="user-1", role="user", content="Q"),
            ChatMessage(session_id="s1", user_id="user-1", role="assistant", content="A"),
        ]

        with pytest.raises(StoreError) as excinfo:
            self.repository.insert_messages(bad_turn)

        assert excinfo.value.code == CHECK_VIOLATION
        assert self.repository.list_messages("s1") == []

    def test_insert_no_messages_is_noop(self):
        self.repository.insert_messages([])

    def test_duplicate_session_is_coded(self):
        self.repository.create_session(self._session())
        with pytest.raises(StoreError) as excinfo:
            self.repository.create_session(self._session())
        assert excinfo.value.code == UNIQUE_VIOLATION
