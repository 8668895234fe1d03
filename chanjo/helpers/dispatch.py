import asyncio
from collections.abc import Sequence
from datetime import datetime
from enum import Enum

from chanjo.helpers.cache import get_scheduler
from chanjo.helpers.config import CONFIG
from chanjo.helpers.logging import logger
from chanjo.helpers.monitoring import (
    SpanAttributeEnum,
    SpanMeterEnum,
    counter_add,
    start_as_current_span,
)
from chanjo.helpers.schedule import naive_utc_now
from chanjo.models.dispatch import DispatchReportModel, NotificationModel
from chanjo.models.recipient import RecipientModel
from chanjo.models.reminder import CadenceEnum, ReminderModel
from chanjo.persistence.isms import ISms
from chanjo.persistence.istore import IStore, StoreError


class GroupOutcomeEnum(str, Enum):
    FAILED = "failed"
    SENT = "sent"
    SKIPPED = "skipped"


def group_by_recipient(
    reminders: Sequence[ReminderModel],
) -> dict[str, list[ReminderModel]]:
    """
    Group reminders by recipient, keeping their order within each group.
    """
    groups: dict[str, list[ReminderModel]] = {}
    for reminder in reminders:
        groups.setdefault(reminder.recipient_id, []).append(reminder)
    return groups


def compose_notification(
    recipient: RecipientModel,
    reminders: Sequence[ReminderModel],
    sender_name: str,
) -> NotificationModel:
    """
    Compose a single notification listing every vaccine of a group.

    The subject uses the vaccination date of the first reminder.
    """
    vaccination_date = reminders[0].vaccination_date
    if any(
        reminder.vaccination_date.date() != vaccination_date.date()
        for reminder in reminders[1:]
    ):
        logger.warning(
            "Vaccination dates differ within the group, using %s",
            vaccination_date.date(),
        )

    day = f"{vaccination_date:%a %b %d %Y}"
    lines = [
        f"Dear {recipient.display_name()},",
        "",
        f"Your baby has these vaccines due on {day}:",
        *(f"- {reminder.vaccine}" for reminder in reminders),
        "",
        "Regards,",
        sender_name,
    ]
    return NotificationModel(
        body="\n".join(lines),
        subject=f"Vaccinations due on {day}",
    )


async def _dispatch_group(
    recipient_id: str,
    reminders: list[ReminderModel],
    sms: ISms,
    store: IStore,
) -> GroupOutcomeEnum:
    SpanAttributeEnum.RECIPIENT_ID.attribute(recipient_id)

    # Resolve the contact
    recipient = await store.recipient_get(recipient_id)
    if not recipient:
        logger.warning(
            "Recipient not found, skipping %s reminders",
            len(reminders),
        )
        counter_add(SpanMeterEnum.REMINDER_RECIPIENT_SKIPPED, 1)
        return GroupOutcomeEnum.SKIPPED
    contact = recipient.contact()
    if not contact:
        logger.warning(
            "Recipient has no contact, skipping %s reminders",
            len(reminders),
        )
        counter_add(SpanMeterEnum.REMINDER_RECIPIENT_SKIPPED, 1)
        return GroupOutcomeEnum.SKIPPED

    # Send
    notification = compose_notification(
        recipient=recipient,
        reminders=reminders,
        sender_name=CONFIG.reminder.sender_name,
    )
    try:
        success = await sms.send(
            content=notification.as_text(),
            phone_number=contact,
        )
    except Exception:
        logger.exception("Error sending the notification")
        success = False
    if not success:
        # Reminders stay unsent, the next run retries them
        counter_add(SpanMeterEnum.REMINDER_DISPATCH_FAILED, 1)
        return GroupOutcomeEnum.FAILED

    # Mark as sent, only after the notification left
    for reminder in reminders:
        await store.reminder_mark_sent(reminder)
    counter_add(SpanMeterEnum.REMINDER_SENT, len(reminders))
    logger.info("Notification sent for %s reminders", len(reminders))
    return GroupOutcomeEnum.SENT


@start_as_current_span("reminder_process")
async def process(
    cadence: CadenceEnum,
    now: datetime,
    sms: ISms,
    store: IStore,
) -> DispatchReportModel:
    """
    Send the due reminders of a cadence, one notification per recipient.

    A group failing to send is counted and its reminders stay unsent. Groups are dispatched in parallel, bounded by the dispatch concurrency. Raises `StoreError` if the store cannot be read or written.
    """
    SpanAttributeEnum.REMINDER_CADENCE.attribute(cadence.value)
    report = DispatchReportModel(cadence=cadence)

    due = await store.reminder_search_due(cadence=cadence, now=now)
    if not due:
        logger.debug("No %s reminders due", cadence.value)
        return report

    groups = group_by_recipient(due)
    SpanAttributeEnum.REMINDER_COUNT.attribute(len(due))
    logger.info(
        "Processing %s %s reminders for %s recipients",
        len(due),
        cadence.value,
        len(groups),
    )

    async with get_scheduler(limit=CONFIG.reminder.dispatch_concurrency) as scheduler:
        jobs = [
            (
                reminders,
                await scheduler.spawn(
                    _dispatch_group(
                        recipient_id=recipient_id,
                        reminders=reminders,
                        sms=sms,
                        store=store,
                    )
                ),
            )
            for recipient_id, reminders in groups.items()
        ]
        for reminders, job in jobs:
            outcome = await job.wait()
            report.recipients_processed += 1
            if outcome == GroupOutcomeEnum.SENT:
                report.reminders_sent += len(reminders)
            elif outcome == GroupOutcomeEnum.SKIPPED:
                report.recipients_skipped += 1
            else:
                report.recipients_failed += 1

    logger.info(
        "Processed %s recipients, %s reminders sent, %s skipped, %s failed",
        report.recipients_processed,
        report.reminders_sent,
        report.recipients_skipped,
        report.recipients_failed,
    )
    return report


async def trigger(
    cadence: CadenceEnum,
    period_sec: int,
    sms: ISms,
    store: IStore,
) -> None:
    """
    Run the processor of a cadence forever, every `period_sec` seconds.

    A failed run is logged, the next run starts over. Only a cancellation stops the loop.
    """
    logger.info("Starting %s processor, every %s secs", cadence.value, period_sec)
    while True:
        try:
            await process(
                cadence=cadence,
                now=naive_utc_now(),
                sms=sms,
                store=store,
            )
        except StoreError:
            logger.exception("Store error processing %s reminders", cadence.value)
        except Exception:
            logger.exception("Unknown error processing %s reminders", cadence.value)
        await asyncio.sleep(period_sec)
