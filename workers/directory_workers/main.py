from __future__ import annotations

import asyncio
import logging
import random

from opentelemetry import trace

from directory_workers.core.config import get_settings
from directory_workers.core.telemetry import (
    configure_worker_logging,
    setup_worker_telemetry,
    shutdown_worker_telemetry,
)
from directory_workers.jobs.notifications import dispatch_notifications
from directory_workers.services.dispatch_client import DispatchClient
from directory_workers.services.email import ResendSender

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


async def run_worker() -> None:
    settings = get_settings()
    configure_worker_logging()
    telemetry_runtime = setup_worker_telemetry(settings)
    client = DispatchClient(
        base_url=settings.api_base_url,
        module_id=settings.module_id,
        api_key=settings.api_key,
        timeout_seconds=settings.http_timeout_seconds,
    )
    sender = ResendSender(
        api_key=settings.resend_api_key,
        base_url=settings.resend_api_base_url,
        from_address=settings.email_from,
        timeout_seconds=settings.http_timeout_seconds,
    )
    if not settings.resend_api_key:
        logger.warning("SD_WORKER_RESEND_API_KEY not set; pending notifications will be marked failed")

    backoff = settings.poll_interval_seconds
    try:
        while True:
            try:
                with tracer.start_as_current_span("worker.poll_cycle") as span:
                    pending = await client.get_pending_notifications(limit=settings.batch_size)
                    span.set_attribute("notifications.pending", len(pending))
                    if not pending:
                        await asyncio.sleep(settings.poll_interval_seconds)
                        continue

                    summary = await dispatch_notifications(
                        pending,
                        client=client,
                        sender=sender,
                        site_url=settings.site_url,
                    )
                    logger.info("dispatch cycle complete sent=%s failed=%s", summary.sent, summary.failed)
                    backoff = settings.poll_interval_seconds
            except Exception as exc:  # pragma: no cover - keep the loop alive
                jitter = random.uniform(0.0, 0.5)
                sleep_for = min(backoff * (2.0 + jitter), settings.max_backoff_seconds)
                logger.exception("worker iteration failed: %s; retry in %.1fs", exc, sleep_for)
                await asyncio.sleep(sleep_for)
                backoff = sleep_for
    finally:
        shutdown_worker_telemetry(telemetry_runtime)


def main() -> None:
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()
