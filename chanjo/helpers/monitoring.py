from contextlib import contextmanager
from enum import Enum
from functools import cache, wraps
from inspect import iscoroutinefunction
from os import environ

from azure.monitor.opentelemetry import configure_azure_monitor
from opentelemetry import metrics, trace
from opentelemetry.instrumentation.aiohttp_client import AioHttpClientInstrumentor
from opentelemetry.metrics import Counter
from opentelemetry.semconv.attributes import service_attributes
from opentelemetry.trace import Status, StatusCode
from opentelemetry.trace.span import INVALID_SPAN
from opentelemetry.util.types import Attributes, AttributeValue
from structlog.contextvars import bind_contextvars, get_contextvars

MODULE_NAME = "com.github.chanjo.chanjo-reminders"
VERSION = environ.get("VERSION", "0.0.0-unknown")

# Export to Application Insights only when deployed, locally spans stay in process
if environ.get("APPLICATIONINSIGHTS_CONNECTION_STRING"):
    configure_azure_monitor()
    AioHttpClientInstrumentor().instrument()

_resource_attributes = {
    service_attributes.SERVICE_NAME: MODULE_NAME,
    service_attributes.SERVICE_VERSION: VERSION,
}
tracer = trace.get_tracer(
    attributes=_resource_attributes,
    instrumenting_module_name=MODULE_NAME,
)
meter = metrics.get_meter(
    name=MODULE_NAME,
)


class SpanAttributeEnum(str, Enum):
    """
    Identifiers attached to the current span and to every following log line of the task.
    """

    BABY_ID = "baby.id"
    RECIPIENT_ID = "recipient.id"
    REMINDER_CADENCE = "reminder.cadence"
    """Daily or weekly."""
    REMINDER_COUNT = "reminder.count"
    """Reminders handled by the current operation."""

    def attribute(
        self,
        value: AttributeValue,
    ) -> None:
        bind_contextvars(**{self.value: value})
        span = trace.get_current_span()
        if span != INVALID_SPAN:
            span.set_attribute(self.value, value)


class SpanMeterEnum(Enum):
    """
    Counters of the reminder lifecycle, as `(name, unit, description)`.
    """

    REMINDER_DISPATCH_FAILED = (
        "reminder.dispatch.failed",
        "groups",
        "Recipient groups whose notification could not be sent.",
    )
    REMINDER_MATERIALIZED = (
        "reminder.materialized",
        "reminders",
        "Reminders written by a regeneration.",
    )
    REMINDER_RECIPIENT_SKIPPED = (
        "reminder.recipient.skipped",
        "groups",
        "Recipient groups skipped for a missing guardian or contact.",
    )
    REMINDER_SENT = (
        "reminder.sent",
        "reminders",
        "Reminders marked as sent.",
    )


@cache
def _counter(metric: SpanMeterEnum) -> Counter:
    name, unit, description = metric.value
    return meter.create_counter(
        description=description,
        name=name,
        unit=unit,
    )


def counter_add(
    metric: SpanMeterEnum,
    value: float | int,
) -> None:
    """
    Add to a counter, labelled with the identifiers bound to the current task.
    """
    _counter(metric).add(
        amount=value,
        attributes={**_resource_attributes, **get_contextvars()},
    )


def start_as_current_span(
    name: str,
    attributes: Attributes = None,
):
    """
    Run the decorated function, sync or async, within a new current span.
    """

    def decorator(func):
        if iscoroutinefunction(func):

            @wraps(func)
            async def async_wrapper(*args, **kwargs):
                with tracer.start_as_current_span(name=name, attributes=attributes):
                    return await func(*args, **kwargs)

            return async_wrapper

        @wraps(func)
        def wrapper(*args, **kwargs):
            with tracer.start_as_current_span(name=name, attributes=attributes):
                return func(*args, **kwargs)

        return wrapper

    return decorator


@contextmanager
def suppress(*exceptions):
    """
    Like `contextlib.suppress`, but the exception is recorded on the current span, which stays OK.
    """
    try:
        yield
    except exceptions as e:
        span = trace.get_current_span()
        span.record_exception(e)
        span.set_status(Status(StatusCode.OK))
