import argparse
import asyncio
import logging
from collections.abc import Awaitable, Callable

from sqlalchemy.ext.asyncio import async_sessionmaker

from certguard.infra import models  # noqa: F401
from certguard.infra.db import dispose_engine, get_session_factory
from certguard.infra.logging import clear_log_context, configure_logging, update_log_context
from certguard.infra.metrics import metrics
from certguard.jobs import compliance_refresh, outbox
from certguard.services import AppServices, build_app_services
from certguard.settings import settings

logger = logging.getLogger(__name__)

JOB_NAMES = ("outbox", "compliance-refresh")


async def _run_job(
    name: str,
    session_factory: async_sessionmaker,
    runner: Callable[[object], Awaitable[dict[str, int]]],
) -> None:
    try:
        update_log_context(job=name)
        async with session_factory() as session:
            result = await runner(session)
        logger.info("job_complete", extra={"extra": {"job": name, **result}})
    finally:
        clear_log_context()


def _job_runner(name: str, services: AppServices) -> Callable:
    if name == "outbox":
        return lambda session: outbox.run_outbox_delivery(session, services.email_adapter)
    if name == "compliance-refresh":
        return lambda session: compliance_refresh.run_compliance_refresh(session)
    raise ValueError(f"unknown_job:{name}")


async def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Run scheduled jobs")
    parser.add_argument("--job", action="append", dest="jobs", choices=JOB_NAMES, help="Job name to run")
    parser.add_argument(
        "--interval",
        type=float,
        default=settings.job_poll_interval_seconds,
        help="Seconds between loops when not using --once",
    )
    parser.add_argument("--once", action="store_true", help="Run jobs once and exit")
    args = parser.parse_args(argv)

    configure_logging()
    services = build_app_services(settings)
    session_factory = get_session_factory()

    job_names = args.jobs or list(JOB_NAMES)
    runners = [_job_runner(name, services) for name in job_names]

    try:
        while True:
            for name, runner in zip(job_names, runners):
                try:
                    await _run_job(name, session_factory, runner)
                except Exception as exc:  # noqa: BLE001
                    metrics.record_job_error(name, type(exc).__name__)
                    logger.warning("job_failed", extra={"extra": {"job": name, "reason": type(exc).__name__}})
            if args.once:
                break
            await asyncio.sleep(max(args.interval, 1))
    finally:
        await dispose_engine()


if __name__ == "__main__":
    asyncio.run(main())
