"""Nightly sweep that re-derives certification and worker statuses.

Workers are walked in id order in fixed-size batches; each worker is refreshed
in its own transaction so one failure does not undo the rest of the batch.
"""

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from certguard.domain.compliance.db_models import Worker
from certguard.domain.compliance.service import SYSTEM_ACTOR, refresh_worker_status
from certguard.domain.compliance.status import utcnow
from certguard.domain.errors import WorkerNotFound
from certguard.settings import settings

logger = logging.getLogger(__name__)


async def _next_batch(session: AsyncSession, after: str | None, limit: int) -> list[str]:
    stmt = select(Worker.worker_id).where(Worker.active.is_(True)).order_by(Worker.worker_id).limit(limit)
    if after is not None:
        stmt = stmt.where(Worker.worker_id > after)
    result = await session.execute(stmt)
    worker_ids = list(result.scalars().all())
    await session.commit()
    return worker_ids


async def run_compliance_refresh(
    session: AsyncSession,
    *,
    batch_size: int | None = None,
    now: datetime | None = None,
) -> dict[str, int]:
    limit = batch_size or settings.job_refresh_batch_size
    current = now or utcnow()
    refreshed = 0
    failing = 0
    skipped = 0
    after: str | None = None
    while True:
        worker_ids = await _next_batch(session, after, limit)
        if not worker_ids:
            break
        for worker_id in worker_ids:
            try:
                result = await refresh_worker_status(session, worker_id, actor_id=SYSTEM_ACTOR, now=current)
            except WorkerNotFound:
                skipped += 1
                continue
            refreshed += 1
            if result.missing_required:
                failing += 1
        after = worker_ids[-1]
        if len(worker_ids) < limit:
            break
    logger.info(
        "compliance_refresh_complete",
        extra={"extra": {"refreshed": refreshed, "failing": failing, "skipped": skipped}},
    )
    return {"refreshed": refreshed, "failing": failing, "skipped": skipped}
