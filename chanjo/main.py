import asyncio
from contextlib import asynccontextmanager
from http import HTTPStatus

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError, ValidationException
from fastapi.responses import JSONResponse
from pydantic import TypeAdapter, ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from chanjo.helpers.administered import (
    administered_list,
    init_administered,
    mark_administered,
)
from chanjo.helpers.config import CONFIG
from chanjo.helpers.dispatch import process, trigger
from chanjo.helpers.http import close_http
from chanjo.helpers.logging import logger
from chanjo.helpers.monitoring import start_as_current_span
from chanjo.helpers.reminders import regenerate_for_baby
from chanjo.helpers.schedule import naive_utc_now
from chanjo.models.baby import AdministeredEntryModel, AdministeredMarkModel
from chanjo.models.dispatch import DispatchReportModel, MaterializeReportModel
from chanjo.models.error import ErrorModel
from chanjo.models.readiness import ReadinessEnum, ReadinessModel
from chanjo.models.reminder import CadenceEnum, ReminderModel
from chanjo.persistence.istore import BabyNotFoundError, ReminderBatchError, StoreError

# First log
logger.info(
    "chanjo-reminders v%s",
    CONFIG.version,
)

# Persistences
_cache = CONFIG.cache.instance
_db = CONFIG.database.instance
_sms = CONFIG.sms.instance


@asynccontextmanager
async def lifespan(app: FastAPI):
    processor_tasks: list[asyncio.Task] = []

    try:
        if CONFIG.reminder.enabled:
            processor_tasks = [
                asyncio.create_task(
                    trigger(
                        cadence=cadence,
                        period_sec=period_sec,
                        sms=_sms,
                        store=_db,
                    ),
                    name=f"processor-{cadence.value}",
                )
                for cadence, period_sec in (
                    (CadenceEnum.DAILY, CONFIG.reminder.daily_period_sec),
                    (CadenceEnum.WEEKLY, CONFIG.reminder.weekly_period_sec),
                )
            ]
            for task in processor_tasks:
                task.add_done_callback(_processor_done)
            app.state.processor_tasks = processor_tasks
        else:
            logger.warning("Reminder processors are disabled")
        yield

    finally:
        # Cancel tasks
        for task in processor_tasks:
            task.cancel()
        await asyncio.gather(*processor_tasks, return_exceptions=True)
        app.state.processor_tasks = []
        # Close HTTP session
        await close_http()


def _processor_done(task: asyncio.Task) -> None:
    """
    Log a processor that stopped without being cancelled.
    """
    if task.cancelled():
        return
    if exc := task.exception():
        logger.error("Processor %s stopped", task.get_name(), exc_info=exc)
    else:
        logger.error("Processor %s stopped", task.get_name())


# FastAPI
api = FastAPI(
    description="Vaccination reminders for babies, sent to their guardians a week and a day before each vaccine is due.",
    lifespan=lifespan,
    title="chanjo-reminders",
    version=CONFIG.version,
)


@api.get("/health/liveness")
@start_as_current_span("health_liveness_get")
async def health_liveness_get(request: Request) -> JSONResponse:
    """
    Check if the service is running.

    No parameters are expected.

    Returns a 200 OK if the service is technically running. If a reminder processor stopped, it returns a 503 Service Unavailable, so the host restarts the service.
    """
    stopped = [
        task.get_name()
        for task in getattr(request.app.state, "processor_tasks", [])
        if task.done()
    ]
    if stopped:
        return _standard_error(
            details=stopped,
            message="Reminder processors stopped",
            status_code=HTTPStatus.SERVICE_UNAVAILABLE,
        )
    return JSONResponse(content=None, status_code=HTTPStatus.OK)


@api.get(
    "/health/readiness",
    status_code=HTTPStatus.OK,
)
@start_as_current_span("health_readiness_get")
async def health_readiness_get() -> JSONResponse:
    """
    Check if the service is ready to serve requests.

    No parameters are expected. Services tested are: cache, store, sms.

    Returns a 200 OK if the service is ready to serve requests. If the service is not ready, it should return a 503 Service Unavailable.
    """
    # Check all components in parallel
    (
        cache_check,
        store_check,
        sms_check,
    ) = await asyncio.gather(
        _cache.readiness(),
        _db.readiness(),
        _sms.readiness(),
    )
    readiness = ReadinessModel.from_checks(
        cache=cache_check,
        sms=sms_check,
        startup=ReadinessEnum.OK,
        store=store_check,
    )
    return JSONResponse(
        content=readiness.model_dump(mode="json"),
        status_code=HTTPStatus.OK
        if readiness.status == ReadinessEnum.OK
        else HTTPStatus.SERVICE_UNAVAILABLE,
    )


@api.get("/baby/{baby_id}/reminders")
@start_as_current_span("baby_reminders_get")
async def baby_reminders_get(baby_id: str) -> list[ReminderModel]:
    """
    REST API to list the reminders of a baby, sent or not.

    Parameters:
    - baby_id: Baby to list the reminders of

    Returns a list of reminder objects `ReminderModel`, ordered by trigger date, in JSON format.
    """
    reminders = await _db.reminder_search_by_baby(baby_id)
    return TypeAdapter(list[ReminderModel]).dump_python(reminders)


@api.post(
    "/baby/{baby_id}/reminders",
    status_code=HTTPStatus.OK,
)
@start_as_current_span("baby_reminders_post")
async def baby_reminders_post(baby_id: str) -> MaterializeReportModel:
    """
    REST API to regenerate the reminders of a baby, after its date of birth changed.

    Parameters:
    - baby_id: Baby to regenerate the reminders of

    Returns a report `MaterializeReportModel`, in JSON format.
    """
    try:
        return await regenerate_for_baby(
            baby_id=baby_id,
            now=naive_utc_now(),
            store=_db,
        )
    except BabyNotFoundError as e:
        raise HTTPException(
            detail=str(e),
            status_code=HTTPStatus.NOT_FOUND,
        ) from e


@api.get("/baby/{baby_id}/administered")
@start_as_current_span("baby_administered_get")
async def baby_administered_get(baby_id: str) -> list[AdministeredEntryModel]:
    """
    REST API to list the vaccines administered to a baby.

    Parameters:
    - baby_id: Baby to list the vaccines of

    Returns a list of `AdministeredEntryModel`, in JSON format.
    """
    try:
        entries = await administered_list(baby_id=baby_id, store=_db)
    except BabyNotFoundError as e:
        raise HTTPException(
            detail=str(e),
            status_code=HTTPStatus.NOT_FOUND,
        ) from e
    return TypeAdapter(list[AdministeredEntryModel]).dump_python(entries)


@api.post(
    "/baby/{baby_id}/administered",
    status_code=HTTPStatus.CREATED,
)
@start_as_current_span("baby_administered_post")
async def baby_administered_post(
    baby_id: str,
    mark: AdministeredMarkModel,
) -> JSONResponse:
    """
    REST API to mark a vaccine as administered.

    Parameters:
    - baby_id: Baby who received the vaccine
    - mark: Vaccine, day it was administered and who marked it (manual by default)

    Returns a 201 Created if marked, a 200 OK if it was already marked.
    """
    try:
        created = await mark_administered(
            baby_id=baby_id,
            day=mark.date,
            source=mark.source,
            store=_db,
            vaccine=mark.vaccine,
        )
    except BabyNotFoundError as e:
        raise HTTPException(
            detail=str(e),
            status_code=HTTPStatus.NOT_FOUND,
        ) from e
    return JSONResponse(
        content={"created": created},
        status_code=HTTPStatus.CREATED if created else HTTPStatus.OK,
    )


@api.post("/baby/{baby_id}/administered/init")
@start_as_current_span("baby_administered_init_post")
async def baby_administered_init_post(baby_id: str) -> list[AdministeredEntryModel]:
    """
    REST API to mark the vaccines due before today as administered, for a baby registered after birth.

    Parameters:
    - baby_id: Baby to initialize

    Returns the list of `AdministeredEntryModel` appended, in JSON format.
    """
    try:
        entries = await init_administered(
            baby_id=baby_id,
            now=naive_utc_now(),
            schedule=await _db.schedule_get(),
            store=_db,
        )
    except BabyNotFoundError as e:
        raise HTTPException(
            detail=str(e),
            status_code=HTTPStatus.NOT_FOUND,
        ) from e
    return TypeAdapter(list[AdministeredEntryModel]).dump_python(entries)


@api.post("/reminders/{cadence}/process")
@start_as_current_span("reminders_process_post")
async def reminders_process_post(cadence: CadenceEnum) -> DispatchReportModel:
    """
    REST API to run the processor of a cadence now, without waiting for the periodic run.

    Parameters:
    - cadence: Reminder family to process, daily or weekly

    Returns a report `DispatchReportModel`, in JSON format.
    """
    return await process(
        cadence=cadence,
        now=naive_utc_now(),
        sms=_sms,
        store=_db,
    )


@api.exception_handler(StarletteHTTPException)
async def http_exception_handler(
    request: Request,  # noqa: ARG001
    exc: StarletteHTTPException,
) -> JSONResponse:
    """
    Handle HTTP exceptions and return the error in a standard format.
    """
    return _standard_error(
        message=exc.detail,
        status_code=HTTPStatus(exc.status_code),
    )


@api.exception_handler(RequestValidationError)
@api.exception_handler(ValueError)
async def validation_exception_handler(
    request: Request,  # noqa: ARG001
    exc: RequestValidationError,
) -> JSONResponse:
    """
    Handle validation exceptions and return the error in a standard format.
    """
    return _validation_error(exc)


@api.exception_handler(StoreError)
async def store_exception_handler(
    request: Request,  # noqa: ARG001
    exc: StoreError,
) -> JSONResponse:
    """
    Handle store failures, the request is safe to retry.
    """
    logger.error("Store error: %s", exc)
    return _standard_error(
        details=["A reminder batch was not fully applied"]
        if isinstance(exc, ReminderBatchError)
        else [],
        message="Store unavailable, retry later",
        status_code=HTTPStatus.SERVICE_UNAVAILABLE,
    )


def _validation_error(e: ValidationError | Exception) -> JSONResponse:
    """
    Generate a standard validation error response.
    """
    messages = []
    if isinstance(e, ValidationError) or isinstance(e, ValidationException):
        messages = [
            str(x) for x in e.errors()
        ]  # Pydantic returns well formatted errors, use them
    elif isinstance(e, ValueError):
        messages = [str(e)]
    return _standard_error(
        details=messages,
        message="Validation error",
        status_code=HTTPStatus.UNPROCESSABLE_ENTITY,
    )


def _standard_error(
    message: str,
    status_code,
    details: list[str] | None = None,
) -> JSONResponse:
    """
    Generate a standard error response.
    """
    model = ErrorModel.from_message(
        details=details,
        message=message,
    )
    return JSONResponse(
        content=model.model_dump(mode="json"),
        status_code=status_code,
    )
