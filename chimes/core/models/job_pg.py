from __future__ import annotations
from datetime import datetime
from typing import Any, Optional
from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    true as sa_true,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.dialects.postgresql import JSONB

from chimes.core.models.job import Job


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for PostgreSQL models"""

    pass


class JobModel(Base):
    """
    SQLAlchemy model for storing jobs in the database.

    - id: int # serial identity assigned on insert
    - name: str # unique job name
    - channel: str # channel occurrences are emitted on
    - active: bool # false once the job can no longer fire
    - cron_expression: str # present for recurring jobs
    - next_run_at: datetime # next due instant, NULL means never again
    - last_run_marker: int # version token compared by claims
    - start_date: datetime # start of the validity window
    - end_date: datetime # end of the validity window, NULL = unbounded
    - params: dict # free-form parameters, JSONB
    """

    __tablename__ = 'chimes_jobs'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    channel: Mapped[str] = mapped_column(String(255), nullable=False)
    active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=sa_true()
    )
    cron_expression: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    next_run_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_run_marker: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    params: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)

    __table_args__ = (
        Index('idx_chimes_jobs_due', 'active', 'next_run_at'),
    )

    def to_job(self) -> Job:
        return Job(
            id=self.id,
            name=self.name,
            channel=self.channel,
            active=self.active,
            cron_expression=self.cron_expression,
            next_run_at=self.next_run_at,
            last_run_marker=self.last_run_marker,
            start_date=self.start_date,
            end_date=self.end_date,
            params=self.params or {},
        )

    @classmethod
    def from_job(cls, job: Job) -> JobModel:
        return cls(
            name=job.name,
            channel=job.channel,
            active=job.active,
            cron_expression=job.cron_expression,
            next_run_at=job.next_run_at,
            last_run_marker=job.last_run_marker,
            start_date=job.start_date,
            end_date=job.end_date,
            params=dict(job.params),
        )
