"""Run/candidate persistence used by the run pipeline and the API.

Each call opens its own session and commits on its own; writes from different
runs never share a transaction.
"""

from datetime import UTC, datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.models import Candidate, Run, RunStatus

_RUN_FIELDS = {
    "target_country", "language", "keywords_input", "filter_params",
    "status", "summary_logs", "created_at", "finished_at",
}


class RunNotFoundError(LookupError):
    pass


class RunStateError(ValueError):
    """Illegal status transition (terminal runs only accept the same status)."""


def utcnow() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


def check_transition(current: str, new: str):
    current_status = RunStatus(current)
    new_status = RunStatus(new)
    if current_status.is_terminal and new_status is not current_status:
        raise RunStateError(f"run is {current_status.value}; cannot move to {new_status.value}")


class RunStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def create_run(self, **fields) -> str:
        unknown = set(fields) - _RUN_FIELDS
        if unknown:
            raise TypeError(f"unknown run fields: {sorted(unknown)}")
        fields.setdefault("status", RunStatus.IN_PROGRESS.value)
        async with self._session_factory() as session:
            run = Run(**fields)
            session.add(run)
            await session.commit()
            return run.id

    async def update_run(self, run_id: str, **fields):
        unknown = set(fields) - _RUN_FIELDS
        if unknown:
            raise TypeError(f"unknown run fields: {sorted(unknown)}")
        async with self._session_factory() as session:
            run = await session.get(Run, run_id)
            if run is None:
                raise RunNotFoundError(run_id)
            if "status" in fields:
                check_transition(run.status, fields["status"])
            for key, value in fields.items():
                setattr(run, key, value)
            await session.commit()

    async def insert_candidates(self, candidates: list[dict]):
        """Batch insert in a single transaction (all or nothing)."""
        if not candidates:
            return
        async with self._session_factory() as session:
            session.add_all([Candidate(**row) for row in candidates])
            await session.commit()

    async def get_run(self, run_id: str) -> Run | None:
        async with self._session_factory() as session:
            return await session.get(Run, run_id)

    async def count_candidates(self, run_id: str) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count(Candidate.id)).where(Candidate.run_id == run_id)
            )
            return result.scalar() or 0

    async def list_candidates(self, run_id: str, status: str | None = None) -> list[Candidate]:
        """Candidates of a run, best composite score first."""
        query = (
            select(Candidate)
            .where(Candidate.run_id == run_id)
            .order_by(Candidate.total_score.desc(), Candidate.advertiser_name)
        )
        if status:
            query = query.where(Candidate.status == status)
        async with self._session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def list_runs(self, limit: int = 50) -> list[Run]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Run).order_by(Run.created_at.desc()).limit(limit)
            )
            return list(result.scalars().all())
