"""
ORM tables.

analysis_progress    one row per analysis job
analysis_results     completed analyses; exactly one row has is_active = true
communications_seen  message ids already ingested by an earlier job
system_config        collaborator credentials saved from the settings page
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, Index, Integer, String, Text, text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ProgressRow(Base):
    __tablename__ = "analysis_progress"

    id = Column(String(36), primary_key=True, default=_uuid)
    status = Column(String(16), nullable=False, index=True)
    progress = Column(Integer, nullable=False, default=0)
    emails_processed = Column(Integer, nullable=False, default=0)
    total_emails = Column(Integer, nullable=False, default=0)
    started_at = Column(DateTime(timezone=True), nullable=False, default=_now, index=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    error_message = Column(Text, nullable=True)


class ResultRow(Base):
    __tablename__ = "analysis_results"

    id = Column(String(36), primary_key=True, default=_uuid)
    analysis_date = Column(DateTime(timezone=True), nullable=False, default=_now, index=True)
    total_emails_analyzed = Column(Integer, nullable=False)
    analysis_result = Column(JSON, nullable=False)
    confidence = Column(Integer, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    departments = Column(JSON, nullable=True)
    countries = Column(JSON, nullable=True)
    date_from = Column(DateTime(timezone=True), nullable=True)
    date_to = Column(DateTime(timezone=True), nullable=True)

    # At most one active row, enforced by the database for every writer
    __table_args__ = (
        Index(
            "uq_analysis_results_single_active",
            "is_active",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active"),
        ),
    )


class CommunicationRow(Base):
    __tablename__ = "communications_seen"

    id = Column(String(36), primary_key=True, default=_uuid)
    message_id = Column(String(512), nullable=False, unique=True, index=True)
    source = Column(String(8), nullable=False)
    chat_type = Column(String(16), nullable=True)
    subject = Column(Text, nullable=True)
    sender = Column(String(320), nullable=True)
    recipients = Column(JSON, nullable=True)
    content = Column(Text, nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=False, default=_now)


class ConfigRow(Base):
    __tablename__ = "system_config"

    key = Column(String(64), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now, onupdate=_now)
