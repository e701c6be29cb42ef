"""AdScout DB models -- runs and their candidates. (SQLite/PostgreSQL compatible)"""

import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, relationship


class Base(DeclarativeBase):
    pass


def _utcnow() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


def _uuid() -> str:
    return str(uuid.uuid4())


class RunStatus(str, enum.Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self is not RunStatus.IN_PROGRESS


class CandidateStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED_FOR_SECONDARY_CHECK = "approved_for_secondary_check"
    REJECTED = "rejected"


# ─────────────────────────────────────────────
# 1. Research run
# ─────────────────────────────────────────────
class Run(Base):
    __tablename__ = "runs"

    id = Column(String(36), primary_key=True, default=_uuid)
    target_country = Column(String(2), nullable=False)
    language = Column(String(2), nullable=False)
    keywords_input = Column(JSON, nullable=False)
    filter_params = Column(JSON)
    status = Column(String(20), nullable=False, default=RunStatus.IN_PROGRESS.value)
    summary_logs = Column(Text)
    created_at = Column(DateTime, nullable=False, default=_utcnow)
    finished_at = Column(DateTime)

    candidates = relationship("Candidate", back_populates="run", cascade="all, delete-orphan")

    __table_args__ = (
        Index("ix_runs_status", "status"),
        Index("ix_runs_created_at", "created_at"),
    )


# ─────────────────────────────────────────────
# 2. Advertiser candidate (one per run x advertiser)
# ─────────────────────────────────────────────
class Candidate(Base):
    __tablename__ = "external_candidates"

    id = Column(String(36), primary_key=True, default=_uuid)
    run_id = Column(String(36), ForeignKey("runs.id", ondelete="CASCADE"), nullable=False)
    keyword_origin = Column(String(200), nullable=False)
    platform_origin = Column(String(50), default="Meta Ad Library")
    ad_library_page_url = Column(Text)
    advertiser_name = Column(String(300), nullable=False)
    product_detected = Column(String(200))
    active_ads_count = Column(Integer, default=0)
    uniproduct_ratio = Column(Float, default=0.0)
    duplicates_score = Column(Float, default=0.0)
    total_score = Column(Integer, default=0)
    validation_reasons = Column(Text)
    status = Column(String(40), nullable=False, default=CandidateStatus.PENDING.value)
    # Set only for approved_for_secondary_check; null = not applicable
    secondary_ads_count = Column(Integer)
    secondary_check_status = Column(String(20))  # measured | unmeasured
    created_at = Column(DateTime, nullable=False, default=_utcnow)

    run = relationship("Run", back_populates="candidates")

    __table_args__ = (
        Index("ix_candidates_run_id", "run_id"),
        Index("ix_candidates_status", "status"),
    )
