from typing import List

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from certguard.api.identity import ActorIdentity, require_compliance_actor
from certguard.domain.errors import OutboxEventNotFound
from certguard.domain.outbox.schemas import DeadLetterEvent, ReplayedEvent
from certguard.domain.outbox.service import get_outbox_event, list_dead_letter, replay_outbox_event
from certguard.infra.db import get_db_session

router = APIRouter(prefix="/v1/admin", tags=["admin"])


@router.get("/outbox/dead-letter", response_model=List[DeadLetterEvent])
async def list_outbox_dead_letter(
    limit: int = Query(default=100, ge=1, le=500),
    session: AsyncSession = Depends(get_db_session),
    identity: ActorIdentity = Depends(require_compliance_actor),
) -> List[DeadLetterEvent]:
    records = await list_dead_letter(session, identity.company_id, limit=limit)
    return [DeadLetterEvent.model_validate(record) for record in records]


@router.post(
    "/outbox/{event_id}/replay",
    response_model=ReplayedEvent,
    status_code=status.HTTP_202_ACCEPTED,
)
async def replay_outbox_dead_letter(
    event_id: str,
    session: AsyncSession = Depends(get_db_session),
    identity: ActorIdentity = Depends(require_compliance_actor),
) -> ReplayedEvent:
    event = await get_outbox_event(session, identity.company_id, event_id)
    if event is None:
        raise OutboxEventNotFound()
    await replay_outbox_event(session, event)
    return ReplayedEvent.model_validate(event)
