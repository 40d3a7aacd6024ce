"""Tests for conversation sessions and the pending file buffer."""

from datetime import timedelta

from intakebot.domain.files import BufferedFileRef
from intakebot.domain.sessions import InMemoryKeyValueStore, SessionStore
from intakebot.infra.time import utc_now


def _ref(file_id, kind="resume"):
    return BufferedFileRef(kind=kind, file_id=file_id, file_name=f"{file_id}.pdf")


class TestSessionStore:
    def test_get_or_create_is_stable(self):
        store = SessionStore("telegram")
        first = store.get_or_create("1")
        assert store.get_or_create("1") is first
        assert first.state == "NEW"

    def test_int_and_str_ids_share_session(self):
        store = SessionStore("telegram")
        assert store.get_or_create(42) is store.get_or_create("42")

    def test_append_keeps_order_without_dedup(self):
        store = SessionStore("telegram")
        store.append("1", _ref("a"))
        store.append("1", _ref("b", "video"))
        store.append("1", _ref("a"))
        assert [r.file_id for r in store.snapshot("1")] == ["a", "b", "a"]

    def test_snapshot_does_not_clear(self):
        store = SessionStore("telegram")
        store.append("1", _ref("a"))
        store.snapshot("1")
        assert len(store.snapshot("1")) == 1

    def test_snapshot_unknown_user(self):
        assert SessionStore("telegram").snapshot("nobody") == ()

    def test_users_isolated(self):
        store = SessionStore("telegram")
        store.append("1", _ref("a"))
        assert store.snapshot("2") == ()

    def test_state_transitions(self):
        store = SessionStore("telegram")
        store.append("1", _ref("a"))
        assert store.get("1").state == "AWAITING_PHONE"
        store.remember_phone("1", "+79991234567")
        assert store.get("1").state == "PHONE_KNOWN"
        store.clear("1")
        session = store.get("1")
        assert session.files == []
        assert session.submitted is True
        store.append("1", _ref("b"))
        assert session.submitted is False

    def test_cleanup_removes_idle(self):
        backing = InMemoryKeyValueStore()
        store = SessionStore("whatsapp", backing)
        store.get_or_create("old").last_activity = utc_now() - timedelta(hours=25)
        store.get_or_create("fresh")
        assert store.cleanup(timedelta(hours=24)) == 1
        assert store.get("old") is None
        assert store.get("fresh") is not None
        assert len(backing) == 1
