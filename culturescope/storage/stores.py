"""
Stores for progress records, analysis results, ingested messages and config.

Every public method runs in its own transaction (see Database.session) and
returns Pydantic models, never ORM rows, so callers cannot mutate stored
state by accident.

Usage:
    from culturescope.storage.stores import ProgressStore, ResultStore

    progress = ProgressStore(db)
    record = progress.create(status=ProgressStatus.RUNNING)
    progress.update(record.id, emails_processed=10, progress=27)
"""

import base64
import hashlib
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Optional

from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from culturescope.analysis.schemas import (
    AnalysisResult,
    ProgressRecord,
    ProgressStatus,
    TERMINAL_STATUSES,
    UnifiedCommunication,
)
from culturescope.storage.database import Database, StoreError
from culturescope.storage.models import CommunicationRow, ConfigRow, ProgressRow, ResultRow

logger = logging.getLogger(__name__)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo on the way back; every stored timestamp is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


# =============================================================================
# PROGRESS
# =============================================================================

class ProgressStore:
    """
    Job progress records.

    The store does not enforce "one running job"; the orchestrator does.
    """

    UPDATABLE_FIELDS = frozenset({
        "status", "progress", "emails_processed", "total_emails",
        "completed_at", "error_message",
    })

    def __init__(self, db: Database):
        self._db = db

    def create(
        self,
        status: ProgressStatus = ProgressStatus.RUNNING,
        progress: int = 0,
        emails_processed: int = 0,
        total_emails: int = 0,
    ) -> ProgressRecord:
        row = ProgressRow(
            status=ProgressStatus(status).value,
            progress=progress,
            emails_processed=emails_processed,
            total_emails=total_emails,
            started_at=datetime.now(timezone.utc),
        )
        with self._db.session() as session:
            session.add(row)
            session.flush()
            record = self._to_record(row)

        logger.debug(
            "progress.created",
            extra={"action": "progress.created", "progress_id": record.id, "status": record.status.value},
        )
        return record

    def update(
        self,
        progress_id: str,
        require_status: Optional[ProgressStatus] = None,
        **fields: Any,
    ) -> Optional[ProgressRecord]:
        """
        Merge `fields` into the record and return it.

        Returns None if the record does not exist, or if `require_status` is
        given and the stored status differs. When the merged status is
        terminal, completed_at is set to now.
        """
        unknown = set(fields) - self.UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown progress fields: {sorted(unknown)}")

        with self._db.session() as session:
            row = session.get(ProgressRow, progress_id)
            if row is None:
                return None
            if require_status is not None and row.status != ProgressStatus(require_status).value:
                return None

            for key, value in fields.items():
                if key == "status":
                    value = ProgressStatus(value).value
                setattr(row, key, value)

            if ProgressStatus(row.status) in TERMINAL_STATUSES:
                row.completed_at = datetime.now(timezone.utc)

            session.flush()
            return self._to_record(row)

    def get(self, progress_id: str) -> Optional[ProgressRecord]:
        with self._db.session() as session:
            row = session.get(ProgressRow, progress_id)
            return self._to_record(row) if row else None

    def get_latest(self) -> Optional[ProgressRecord]:
        """The most recently started record, or None if no job has ever run."""
        with self._db.session() as session:
            row = session.scalars(
                select(ProgressRow).order_by(ProgressRow.started_at.desc()).limit(1)
            ).first()
            return self._to_record(row) if row else None

    @staticmethod
    def _to_record(row: ProgressRow) -> ProgressRecord:
        return ProgressRecord(
            id=row.id,
            status=ProgressStatus(row.status),
            progress=row.progress or 0,
            emails_processed=row.emails_processed or 0,
            total_emails=row.total_emails or 0,
            started_at=_as_utc(row.started_at),
            completed_at=_as_utc(row.completed_at),
            error_message=row.error_message,
        )


# =============================================================================
# RESULTS
# =============================================================================

class ResultStore:
    """
    Completed analyses. Exactly one stored result is active at a time.

    create() deactivates every active row and inserts the new active row in
    one transaction. The boundary that holds across processes is the
    database: a partial unique index on is_active (see ResultRow) rejects a
    second active row. A writer that loses that race rolls back and retries
    against the winner's row. The in-process lock only keeps threads of one
    worker from tripping over each other.
    """

    # Attempts when another writer's active row lands first
    CREATE_ATTEMPTS = 3

    def __init__(self, db: Database):
        self._db = db
        self._write_lock = threading.Lock()

    def create(
        self,
        total_emails_analyzed: int,
        analysis_result: dict[str, Any],
        confidence: Optional[int] = None,
        departments: Optional[list[str]] = None,
        countries: Optional[list[str]] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> AnalysisResult:
        for attempt in range(1, self.CREATE_ATTEMPTS + 1):
            try:
                with self._write_lock, self._db.session() as session:
                    session.execute(
                        update(ResultRow).where(ResultRow.is_active.is_(True)).values(is_active=False)
                    )
                    row = ResultRow(
                        analysis_date=datetime.now(timezone.utc),
                        total_emails_analyzed=total_emails_analyzed,
                        analysis_result=analysis_result,
                        confidence=confidence,
                        is_active=True,
                        departments=list(departments) if departments else None,
                        countries=list(countries) if countries else None,
                        date_from=date_from,
                        date_to=date_to,
                    )
                    session.add(row)
                    session.flush()
                    result = self._to_result(row)
                break
            except StoreError as e:
                if not isinstance(e.__cause__, IntegrityError) or attempt == self.CREATE_ATTEMPTS:
                    raise
                logger.warning(
                    "result.create.conflict",
                    extra={"action": "result.create.conflict", "attempt": attempt},
                )

        logger.info(
            "result.created",
            extra={
                "action": "result.created",
                "result_id": result.id,
                "total_emails_analyzed": total_emails_analyzed,
            },
        )
        return result

    def get_active(self) -> Optional[AnalysisResult]:
        with self._db.session() as session:
            row = session.scalars(
                select(ResultRow)
                .where(ResultRow.is_active.is_(True))
                .order_by(ResultRow.analysis_date.desc())
                .limit(1)
            ).first()
            return self._to_result(row) if row else None

    def get_all(self) -> list[AnalysisResult]:
        """All results, newest analysis_date first."""
        with self._db.session() as session:
            rows = session.scalars(
                select(ResultRow).order_by(ResultRow.analysis_date.desc())
            ).all()
            return [self._to_result(r) for r in rows]

    def count(self) -> int:
        with self._db.session() as session:
            return session.scalar(select(func.count()).select_from(ResultRow))

    @staticmethod
    def _to_result(row: ResultRow) -> AnalysisResult:
        return AnalysisResult(
            id=row.id,
            analysis_date=_as_utc(row.analysis_date),
            total_emails_analyzed=row.total_emails_analyzed,
            analysis_result=row.analysis_result,
            confidence=row.confidence,
            is_active=bool(row.is_active),
            departments=row.departments,
            countries=row.countries,
            date_from=_as_utc(row.date_from),
            date_to=_as_utc(row.date_to),
        )


# =============================================================================
# INGESTED COMMUNICATIONS
# =============================================================================

class MessageStore:
    """Markers for communications already ingested, keyed by message id."""

    def __init__(self, db: Database):
        self._db = db

    def is_seen(self, message_id: str) -> bool:
        with self._db.session() as session:
            found = session.scalars(
                select(CommunicationRow.id).where(CommunicationRow.message_id == message_id)
            ).first()
            return found is not None

    def mark_seen(self, comm: UnifiedCommunication) -> bool:
        """Record the communication. Returns False if it was already recorded."""
        with self._db.session() as session:
            exists = session.scalars(
                select(CommunicationRow.id).where(CommunicationRow.message_id == comm.id)
            ).first()
            if exists is not None:
                return False
            session.add(CommunicationRow(
                message_id=comm.id,
                source=comm.source.value,
                chat_type=comm.chat_type.value if comm.chat_type else None,
                subject=comm.subject,
                sender=comm.sender or None,
                recipients=list(comm.recipients),
                content=comm.content or None,
                sent_at=comm.sent_at,
            ))
            return True


# =============================================================================
# CONFIG
# =============================================================================

class ConfigStore:
    """
    Key/value collaborator configuration, encrypted at rest with Fernet.

    The Fernet key is derived from the configured secret, so rotating the
    secret makes previously stored values unreadable (they are skipped and
    logged, and the environment values apply again).
    """

    def __init__(self, db: Database, secret_key: str):
        self._db = db
        key_bytes = hashlib.sha256(secret_key.encode()).digest()
        self._fernet = Fernet(base64.urlsafe_b64encode(key_bytes))

    def set(self, key: str, value: str) -> None:
        token = self._fernet.encrypt(value.encode()).decode()
        with self._db.session() as session:
            row = session.get(ConfigRow, key)
            if row is None:
                session.add(ConfigRow(key=key, value=token))
            else:
                row.value = token
                row.updated_at = datetime.now(timezone.utc)

    def get(self, key: str) -> Optional[str]:
        with self._db.session() as session:
            row = session.get(ConfigRow, key)
            if row is None:
                return None
            return self._decrypt(row.key, row.value)

    def get_all(self) -> dict[str, str]:
        with self._db.session() as session:
            rows = session.scalars(select(ConfigRow)).all()
            decrypted = {row.key: self._decrypt(row.key, row.value) for row in rows}
        return {k: v for k, v in decrypted.items() if v is not None}

    def _decrypt(self, key: str, token: str) -> Optional[str]:
        try:
            return self._fernet.decrypt(token.encode()).decode()
        except InvalidToken:
            logger.warning(
                "config.decrypt_failed",
                extra={"action": "config.decrypt_failed", "key": key},
            )
            return None
