"""
Tests for the persistence layer.

Covers progress record merging and terminal timestamps, the single-active
result rule (sequential and concurrent), message-seen markers, and
encrypted config values.
"""

import threading
from contextlib import contextmanager
from unittest.mock import patch

import pytest
from sqlalchemy import select

from culturescope.analysis.schemas import (
    ChatType,
    CommunicationSource,
    ProgressStatus,
    UnifiedCommunication,
)
from culturescope.logging.config import setup_logging
from culturescope.storage.database import Database, StoreError
from culturescope.storage.models import ConfigRow, ResultRow
from culturescope.storage.stores import ConfigStore, MessageStore, ProgressStore, ResultStore


@pytest.fixture(autouse=True)
def init_logging():
    setup_logging("debug")


class RacingWriterDatabase(Database):
    """Slips another writer's active row into the first transaction."""

    def __init__(self, url: str):
        super().__init__(url)
        self.races = 1

    @contextmanager
    def session(self):
        with super().session() as session:
            if self.races:
                self.races -= 1
                session.add(ResultRow(total_emails_analyzed=9, analysis_result={}, is_active=True))
            yield session


class TestProgressStore:
    def test_create_defaults(self, db):
        record = ProgressStore(db).create()

        assert record.id
        assert record.status == ProgressStatus.RUNNING
        assert record.progress == 0
        assert record.emails_processed == 0
        assert record.total_emails == 0
        assert record.started_at is not None
        assert record.completed_at is None

    def test_update_merges_fields(self, db):
        store = ProgressStore(db)
        record = store.create()

        store.update(record.id, total_emails=40)
        updated = store.update(record.id, emails_processed=10, progress=25)

        assert updated.total_emails == 40
        assert updated.emails_processed == 10
        assert updated.progress == 25
        assert updated.status == ProgressStatus.RUNNING

    @pytest.mark.parametrize("status", [ProgressStatus.COMPLETED, ProgressStatus.ERROR])
    def test_terminal_status_sets_completed_at(self, db, status):
        store = ProgressStore(db)
        record = store.create()

        updated = store.update(record.id, status=status)

        assert updated.completed_at is not None
        assert updated.completed_at >= updated.started_at

    def test_paused_does_not_set_completed_at(self, db):
        store = ProgressStore(db)
        record = store.create()

        updated = store.update(record.id, status=ProgressStatus.PAUSED)

        assert updated.completed_at is None

    def test_update_unknown_id_returns_none(self, db):
        assert ProgressStore(db).update("missing", progress=10) is None

    def test_require_status_mismatch_leaves_record_alone(self, db):
        store = ProgressStore(db)
        record = store.create()
        store.update(record.id, status=ProgressStatus.PAUSED)

        result = store.update(
            record.id, require_status=ProgressStatus.RUNNING, emails_processed=5
        )

        assert result is None
        assert store.get(record.id).emails_processed == 0
        assert store.get(record.id).status == ProgressStatus.PAUSED

    def test_unknown_field_rejected(self, db):
        store = ProgressStore(db)
        record = store.create()
        with pytest.raises(ValueError):
            store.update(record.id, started_at=None)

    def test_get_latest(self, db):
        store = ProgressStore(db)
        assert store.get_latest() is None

        store.create(status=ProgressStatus.COMPLETED)
        second = store.create()

        assert store.get_latest().id == second.id

    def test_missing_tables_raise_store_error(self):
        bare = Database("sqlite://")
        with pytest.raises(StoreError):
            ProgressStore(bare).create()
        bare.dispose()


class TestResultStore:
    def test_create_is_active(self, db):
        store = ResultStore(db)
        result = store.create(
            total_emails_analyzed=37,
            analysis_result={"tipo_de_cultura": "Clan"},
            confidence=85,
            departments=["Ventas"],
        )

        assert result.is_active is True
        assert result.total_emails_analyzed == 37
        assert result.analysis_result == {"tipo_de_cultura": "Clan"}
        assert result.departments == ["Ventas"]
        assert result.countries is None

    def test_new_result_deactivates_previous(self, db):
        store = ResultStore(db)
        first = store.create(total_emails_analyzed=1, analysis_result={"n": 1})
        second = store.create(total_emails_analyzed=2, analysis_result={"n": 2})

        assert store.get_active().id == second.id
        by_id = {r.id: r for r in store.get_all()}
        assert by_id[first.id].is_active is False
        assert by_id[second.id].is_active is True

    def test_get_all_newest_first(self, db):
        store = ResultStore(db)
        ids = [store.create(total_emails_analyzed=i, analysis_result={}).id for i in range(3)]

        assert [r.id for r in store.get_all()] == list(reversed(ids))
        assert store.count() == 3

    def test_empty_store(self, db):
        store = ResultStore(db)
        assert store.get_active() is None
        assert store.get_all() == []
        assert store.count() == 0

    def test_concurrent_creates_leave_one_active(self, tmp_path):
        database = Database(f"sqlite:///{tmp_path / 'results.db'}")
        database.create_all()
        store = ResultStore(database)
        errors = []

        def create(n):
            try:
                store.create(total_emails_analyzed=n, analysis_result={"n": n})
            except StoreError as e:
                errors.append(e)

        threads = [threading.Thread(target=create, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        results = store.get_all()
        assert errors == []
        assert len(results) == 8
        assert sum(1 for r in results if r.is_active) == 1
        database.dispose()

    def test_database_rejects_second_active_row(self, db):
        ResultStore(db).create(total_emails_analyzed=1, analysis_result={"n": 1})

        with pytest.raises(StoreError):
            with db.session() as session:
                session.add(ResultRow(total_emails_analyzed=2, analysis_result={"n": 2}, is_active=True))

    def test_create_retries_when_another_writer_wins(self):
        database = RacingWriterDatabase("sqlite://")
        database.create_all()
        store = ResultStore(database)

        result = store.create(total_emails_analyzed=5, analysis_result={"n": 5})

        assert database.races == 0
        assert store.get_active().id == result.id
        assert store.count() == 1
        database.dispose()

    def test_count_does_not_load_documents(self, db):
        store = ResultStore(db)
        store.create(total_emails_analyzed=1, analysis_result={"n": 1})
        store.create(total_emails_analyzed=2, analysis_result={"n": 2})

        with patch.object(ResultStore, "_to_result", side_effect=AssertionError("row loaded")):
            assert store.count() == 2


class TestMessageStore:
    def test_mark_seen_once(self, db):
        store = MessageStore(db)
        comm = UnifiedCommunication(
            id="msg-1",
            source=CommunicationSource.CHAT,
            chat_type=ChatType.DIRECT,
            sender="user-1",
            content="hola",
        )

        assert store.is_seen("msg-1") is False
        assert store.mark_seen(comm) is True
        assert store.mark_seen(comm) is False
        assert store.is_seen("msg-1") is True


class TestConfigStore:
    def test_round_trip_and_encrypted_at_rest(self, db):
        store = ConfigStore(db, secret_key="secret")
        store.set("CLIENT_SECRET", "s3cr3t-value")

        assert store.get("CLIENT_SECRET") == "s3cr3t-value"
        with db.session() as session:
            raw = session.scalars(select(ConfigRow.value)).one()
        assert "s3cr3t-value" not in raw

    def test_overwrite(self, db):
        store = ConfigStore(db, secret_key="secret")
        store.set("CLIENT_ID", "one")
        store.set("CLIENT_ID", "two")

        assert store.get("CLIENT_ID") == "two"
        assert store.get_all() == {"CLIENT_ID": "two"}

    def test_missing_key(self, db):
        assert ConfigStore(db, secret_key="secret").get("NOPE") is None

    def test_wrong_secret_skips_values(self, db):
        ConfigStore(db, secret_key="old").set("LLM_API_KEY", "sk-ant-1")

        rotated = ConfigStore(db, secret_key="new")

        assert rotated.get("LLM_API_KEY") is None
        assert rotated.get_all() == {}
