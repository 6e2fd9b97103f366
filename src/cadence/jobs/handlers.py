"""Built-in sample handlers.

They stand in for real work: each logs, sleeps for a plausible duration and
returns. ``send-email`` fails now and then so the failure path has something
to record.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any

from cadence.jobs.registry import JobRegistry

logger = logging.getLogger("cadence.jobs.handlers")

EMAIL_FAILURE_RATE = 0.2


class EmailDeliveryError(RuntimeError):
    """Raised by the sample email handler to simulate a provider outage."""


async def process_data(data: dict[str, Any]) -> None:
    logger.info("Processing data: %s", data)
    await asyncio.sleep(2)
    logger.info("Data processing completed")


async def send_email(data: dict[str, Any]) -> None:
    to = data.get("to")
    logger.info("Sending email to %s: %s", to, data.get("subject"))
    if random.random() < EMAIL_FAILURE_RATE:
        raise EmailDeliveryError("Email service temporarily unavailable")
    await asyncio.sleep(0.5)
    logger.info("Email sent to %s", to)


async def process_image(data: dict[str, Any]) -> None:
    logger.info(
        "Processing image %s with operations %s",
        data.get("imageUrl"),
        data.get("operations", []),
    )
    await asyncio.sleep(3)
    logger.info("Image processing completed: %s", data.get("imageUrl"))


async def generate_report(data: dict[str, Any]) -> None:
    logger.info("Generating %s report for %s", data.get("reportType"), data.get("dateRange"))
    await asyncio.sleep(3)
    logger.info("Report generated: %s", data.get("reportType"))


async def cleanup_old_data(data: dict[str, Any]) -> None:
    days = data.get("daysOld", 30)
    logger.info("Cleaning up data older than %s days", days)
    await asyncio.sleep(2)
    logger.info("Cleanup completed")


async def send_webhook(data: dict[str, Any]) -> None:
    logger.info("Sending webhook to %s", data.get("url"))
    await asyncio.sleep(1)
    logger.info("Webhook delivered to %s", data.get("url"))


async def backup_data(data: dict[str, Any]) -> None:
    logger.info("Starting %s backup", data.get("backupType", "full"))
    await asyncio.sleep(5)
    logger.info("Backup completed")


async def send_notification(data: dict[str, Any]) -> None:
    logger.info(
        "Sending %s-priority notification to user %s",
        data.get("priority", "normal"),
        data.get("userId"),
    )
    await asyncio.sleep(0.5)
    logger.info("Notification sent to user %s", data.get("userId"))


async def recurring_task(data: dict[str, Any]) -> None:
    logger.info("Recurring task executing: %s", data.get("message", ""))
    await asyncio.sleep(1)


async def process_batch(data: dict[str, Any]) -> None:
    items = data.get("items") or []
    logger.info("Processing batch %s with %d items", data.get("batchId"), len(items))
    for index, _item in enumerate(items, start=1):
        await asyncio.sleep(0.1)
        logger.debug("Processed item %d/%d", index, len(items))
    logger.info("Batch %s processed", data.get("batchId"))


# name -> (handler, concurrency); None falls back to the configured default
BUILTIN_HANDLERS = {
    "process-data": (process_data, None),
    "send-email": (send_email, 3),
    "process-image": (process_image, 2),
    "generate-report": (generate_report, None),
    "cleanup-old-data": (cleanup_old_data, None),
    "send-webhook": (send_webhook, 5),
    "backup-data": (backup_data, None),
    "send-notification": (send_notification, 10),
    "recurring-task": (recurring_task, None),
    "process-batch": (process_batch, 1),
}


def register_builtin_handlers(registry: JobRegistry) -> JobRegistry:
    """Define every sample handler on *registry* and return it."""
    for name, (handler, concurrency) in BUILTIN_HANDLERS.items():
        registry.define(name, handler, concurrency=concurrency)
    logger.debug("Registered %d built-in job handlers", len(BUILTIN_HANDLERS))
    return registry
