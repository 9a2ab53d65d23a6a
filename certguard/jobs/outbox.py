from certguard.domain.outbox.service import OutboxAdapters, process_outbox
from certguard.infra.email import EmailAdapter, NoopEmailAdapter
from certguard.settings import settings


async def run_outbox_delivery(session, adapter: EmailAdapter | NoopEmailAdapter | None) -> dict[str, int]:
    adapters = OutboxAdapters(email_adapter=adapter)
    return await process_outbox(session, adapters, limit=settings.job_outbox_batch_size)
