"""
Unit tests for the security audit log.

Tests:
- Event recording and retrieval
- Privacy of user references
- Hash chain verification and tamper detection
- Export / import
"""

import json

import pytest

from mfaguard.integration.event_logger import (
    GENESIS_HASH, EventLogger, EventType, get_user_hash, get_user_hash_short,
)


@pytest.fixture
def populated(audit):
    audit.log_login("u-alice", success=True)
    audit.record(EventType.MFA_CHALLENGE_ISSUED, "u-alice", channel="email")
    audit.log_mfa("u-alice", success=False, reason="incorrect_code")
    audit.log_login("bob", success=False, reason="bad_password")
    return audit


class TestUserHash:
    """Tests for privacy hashes."""

    def test_deterministic(self):
        assert get_user_hash("u-alice") == get_user_hash("u-alice")
        assert len(get_user_hash("u-alice")) == 64

    def test_distinct_users(self):
        assert get_user_hash("u-alice") != get_user_hash("u-bob")

    def test_short_hash(self):
        assert get_user_hash_short("u-alice") == get_user_hash("u-alice")[:16]


class TestRecording:
    """Tests for recording and querying events."""

    def test_records_in_order(self, populated):
        types = [e.event_type for e in populated.get_all_events()]
        assert types == [
            EventType.LOGIN_SUCCESS,
            EventType.MFA_CHALLENGE_ISSUED,
            EventType.MFA_FAILED,
            EventType.LOGIN_FAILED,
        ]
        assert len(populated) == 4

    def test_uses_injected_clock(self, audit, clock):
        clock.advance(5)
        event = audit.log_login("u-alice", success=True)
        assert event.timestamp == clock.now()

    def test_user_reference_is_hashed(self, populated):
        exported = populated.export_log()
        assert "u-alice" not in exported
        assert get_user_hash("u-alice") in exported

    def test_get_user_events(self, populated):
        assert len(populated.get_user_events("u-alice")) == 3
        assert len(populated.get_user_events("bob")) == 1

    def test_get_events_by_type(self, populated):
        failed = populated.get_events_by_type(EventType.LOGIN_FAILED)
        assert len(failed) == 1
        assert failed[0].details == {'reason': 'bad_password'}

    def test_get_recent_events(self, populated):
        recent = populated.get_recent_events(2)
        assert [e.event_type for e in recent] == [EventType.MFA_FAILED,
                                                  EventType.LOGIN_FAILED]

    def test_str(self, populated):
        assert "login_success" in str(populated.get_all_events()[0])


class TestCallbacks:
    """Tests for subscriber callbacks."""

    def test_callback_receives_events(self, audit):
        seen = []
        audit.add_callback(seen.append)
        audit.log_login("u-alice", success=True)
        assert [e.event_type for e in seen] == [EventType.LOGIN_SUCCESS]

        audit.remove_callback(seen.append)
        audit.log_login("u-alice", success=True)
        assert len(seen) == 1

    def test_failing_callback_does_not_break_logging(self, audit):
        def boom(event):
            raise RuntimeError("subscriber down")

        audit.add_callback(boom)
        audit.log_login("u-alice", success=True)
        assert len(audit) == 1


class TestIntegrity:
    """Tests for the hash chain."""

    def test_empty_log_is_intact(self):
        assert EventLogger().verify_integrity()

    def test_chain_links(self, populated):
        records = populated.records
        assert records[0].prev_hash == GENESIS_HASH
        for prev, record in zip(records, records[1:]):
            assert record.prev_hash == prev.hash
        assert populated.verify_integrity()

    def test_export_import_round_trip(self, populated):
        restored = EventLogger.import_log(populated.export_log())
        assert len(restored) == len(populated)
        assert restored.verify_integrity()
        assert [r.hash for r in restored.records] == [r.hash for r in populated.records]

    def test_edited_event_detected(self, populated):
        lines = populated.export_log().splitlines()
        raw = json.loads(lines[1])
        raw['event']['details']['channel'] = "mobile"
        lines[1] = json.dumps(raw)
        assert not EventLogger.import_log("\n".join(lines)).verify_integrity()

    def test_deleted_record_detected(self, populated):
        lines = populated.export_log().splitlines()
        del lines[1]
        assert not EventLogger.import_log("\n".join(lines)).verify_integrity()

    def test_reordered_records_detected(self, populated):
        lines = populated.export_log().splitlines()
        lines[1], lines[2] = lines[2], lines[1]
        assert not EventLogger.import_log("\n".join(lines)).verify_integrity()
