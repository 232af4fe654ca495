"""
Durable job records backed by SQLAlchemy.
"""

import logging
from pathlib import Path
from typing import List, Optional

from sqlalchemy import JSON, Column, DateTime, Index, Integer, String, Text, select, update
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from .exceptions import JobStoreError
from .models import JobStatus, TranscodeJob, utcnow

logger = logging.getLogger(__name__)

Base = declarative_base()


class TranscodeJobRecord(Base):
    __tablename__ = "transcoding_jobs"

    id = Column(String(64), primary_key=True)
    media_id = Column(String(64), nullable=False, index=True)
    user_id = Column(String(64), nullable=True)
    status = Column(String(20), nullable=False, default=JobStatus.PENDING.value, index=True)
    progress = Column(Integer, nullable=False, default=0)
    input_path = Column(String(4096), nullable=False)
    output_path = Column(String(4096), nullable=False)
    profile = Column(String(64), nullable=False)
    options = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    callback_url = Column(String(2048), nullable=True)

    __table_args__ = (
        Index("ix_transcoding_jobs_media_profile", "media_id", "profile"),
    )


class MediaStreamRecord(Base):
    """HLS master playlist currently published for a media item."""
    __tablename__ = "media_streams"

    media_id = Column(String(64), primary_key=True)
    hls_path = Column(String(4096), nullable=False)
    job_id = Column(String(64), nullable=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow)


def _to_record(job: TranscodeJob) -> TranscodeJobRecord:
    return TranscodeJobRecord(
        id=job.id,
        media_id=job.media_id,
        user_id=job.user_id,
        status=job.status.value,
        progress=job.progress,
        input_path=job.input_path,
        output_path=job.output_path,
        profile=job.profile,
        options=job.options,
        error=job.error,
        created_at=job.created_at,
        started_at=job.started_at,
        completed_at=job.completed_at,
        callback_url=job.callback_url,
    )


def _to_job(record: TranscodeJobRecord) -> TranscodeJob:
    return TranscodeJob(
        id=record.id,
        media_id=record.media_id,
        user_id=record.user_id,
        status=JobStatus(record.status),
        progress=record.progress or 0,
        input_path=record.input_path,
        output_path=record.output_path,
        profile=record.profile,
        options=dict(record.options or {}),
        error=record.error,
        created_at=record.created_at,
        started_at=record.started_at,
        completed_at=record.completed_at,
        callback_url=record.callback_url,
    )


class JobStore:
    """
    Persistence boundary for transcode jobs.

    Every operation opens its own session; concurrent access is left to
    the database engine. SQLAlchemy errors are re-raised as JobStoreError.
    """

    def __init__(self, database_url: str, echo: bool = False):
        self.database_url = database_url
        self._ensure_sqlite_directory(database_url)
        self.engine: AsyncEngine = create_async_engine(database_url, echo=echo)
        self._sessions = async_sessionmaker(self.engine, expire_on_commit=False)

    @staticmethod
    def _ensure_sqlite_directory(database_url: str) -> None:
        url = make_url(database_url)
        if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
            Path(url.database).expanduser().parent.mkdir(parents=True, exist_ok=True)

    async def init(self) -> None:
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as e:
            raise JobStoreError(f"Cannot initialise job store: {e}") from e
        logger.info(f"[Store] Job store ready ({make_url(self.database_url).get_backend_name()})")

    async def close(self) -> None:
        await self.engine.dispose()

    async def create(self, job: TranscodeJob) -> TranscodeJob:
        try:
            async with self._sessions() as session:
                session.add(_to_record(job))
                await session.commit()
        except SQLAlchemyError as e:
            raise JobStoreError(f"Cannot save job {job.id}: {e}") from e
        return job

    async def update(self, job: TranscodeJob) -> TranscodeJob:
        values = {
            "status": job.status.value,
            "progress": job.progress,
            "output_path": job.output_path,
            "options": job.options,
            "error": job.error,
            "started_at": job.started_at,
            "completed_at": job.completed_at,
        }
        try:
            async with self._sessions() as session:
                result = await session.execute(
                    update(TranscodeJobRecord).where(TranscodeJobRecord.id == job.id).values(**values)
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise JobStoreError(f"Cannot update job {job.id}: {e}") from e
        if result.rowcount == 0:
            raise JobStoreError(f"Cannot update job {job.id}: no such job")
        return job

    async def get(self, job_id: str) -> Optional[TranscodeJob]:
        try:
            async with self._sessions() as session:
                record = await session.get(TranscodeJobRecord, job_id)
        except SQLAlchemyError as e:
            raise JobStoreError(f"Cannot load job {job_id}: {e}") from e
        return _to_job(record) if record else None

    async def list(
        self,
        status: Optional[JobStatus] = None,
        media_id: Optional[str] = None,
        limit: int = 20,
        offset: int = 0
    ) -> List[TranscodeJob]:
        """Jobs matching the filters, most recently started first."""
        query = select(TranscodeJobRecord)
        if status is not None:
            query = query.where(TranscodeJobRecord.status == JobStatus(status).value)
        if media_id is not None:
            query = query.where(TranscodeJobRecord.media_id == media_id)
        query = query.order_by(
            TranscodeJobRecord.started_at.desc(),
            TranscodeJobRecord.created_at.desc(),
        ).limit(limit).offset(offset)

        try:
            async with self._sessions() as session:
                records = (await session.execute(query)).scalars().all()
        except SQLAlchemyError as e:
            raise JobStoreError(f"Cannot list jobs: {e}") from e
        return [_to_job(r) for r in records]

    async def find_completed(self, media_id: str, profile: str) -> Optional[TranscodeJob]:
        """Most recently completed job for a media item and profile."""
        query = (
            select(TranscodeJobRecord)
            .where(
                TranscodeJobRecord.media_id == media_id,
                TranscodeJobRecord.profile == profile,
                TranscodeJobRecord.status == JobStatus.COMPLETED.value,
            )
            .order_by(TranscodeJobRecord.completed_at.desc())
            .limit(1)
        )
        try:
            async with self._sessions() as session:
                record = (await session.execute(query)).scalars().first()
        except SQLAlchemyError as e:
            raise JobStoreError(f"Cannot look up completed jobs for media {media_id}: {e}") from e
        return _to_job(record) if record else None

    async def fail_interrupted(self, reason: str) -> int:
        """Mark jobs left pending or processing by an earlier process as failed."""
        active = (JobStatus.PENDING.value, JobStatus.PROCESSING.value)
        try:
            async with self._sessions() as session:
                result = await session.execute(
                    update(TranscodeJobRecord)
                    .where(TranscodeJobRecord.status.in_(active))
                    .values(status=JobStatus.FAILED.value, error=reason, completed_at=utcnow())
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise JobStoreError(f"Cannot recover interrupted jobs: {e}") from e
        return result.rowcount or 0

    async def set_media_hls_path(self, media_id: str, hls_path: str, job_id: Optional[str] = None) -> None:
        try:
            async with self._sessions() as session:
                await session.merge(MediaStreamRecord(
                    media_id=media_id,
                    hls_path=hls_path,
                    job_id=job_id,
                    updated_at=utcnow(),
                ))
                await session.commit()
        except SQLAlchemyError as e:
            raise JobStoreError(f"Cannot record HLS path for media {media_id}: {e}") from e
        logger.info(f"[Store] Media {media_id} HLS stream: {hls_path}")

    async def get_media_hls_path(self, media_id: str) -> Optional[str]:
        try:
            async with self._sessions() as session:
                record = await session.get(MediaStreamRecord, media_id)
        except SQLAlchemyError as e:
            raise JobStoreError(f"Cannot load HLS path for media {media_id}: {e}") from e
        return record.hls_path if record else None
