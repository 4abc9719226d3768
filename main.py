import uuid
import logging
from typing import List, Optional

from fastapi import FastAPI, Request, HTTPException, Depends, Query, Response, status
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

import db
from config import settings
from app.celery_app import celery_app
from app.errors import DeliveryError, NotFoundError, ValidationError
from app.services import reply_interpreter
from app.services.notifier import Notifier, build_default_notifier
from app.services.reminder_dispatcher import MAX_BATCH_LIMIT, ReminderDispatcher
from app.services.task_service import TaskService
from app.types.task_contract import (
    REMINDER_CHANNELS,
    ProgressSummary,
    ReminderJob,
    ReminderLog,
    Task,
    TaskCreate,
    TaskCreateRequest,
    TaskFilters,
    TaskPriority,
    TaskStatus,
    TaskUpdate,
)
from app.utils import pinpoint
from app.utils.clock import Clock, SystemClock

_LOGGER = logging.getLogger(__name__)

app = FastAPI(title="Task reminders")


@app.on_event("shutdown")
async def shutdown_event():
    await db.dispose_engine()

# --------------------------------------------
# Error mapping
# --------------------------------------------

@app.exception_handler(ValidationError)
async def _validation_error(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(NotFoundError)
async def _not_found(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(DeliveryError)
async def _delivery_error(request: Request, exc: DeliveryError):
    return JSONResponse(status_code=502, content={"detail": str(exc)})

# --------------------------------------------
# Dependencies (overridable in tests)
# --------------------------------------------

_notifier: Optional[Notifier] = None


def get_clock() -> Clock:
    return SystemClock()


def get_notifier() -> Notifier:
    global _notifier
    if _notifier is None:
        _notifier = build_default_notifier()
    return _notifier


def get_task_service(clock: Clock = Depends(get_clock)) -> TaskService:
    return TaskService(clock=clock, log_limit=settings.REMINDER_LOG_LIMIT)


def get_dispatcher(
    clock: Clock = Depends(get_clock), notifier: Notifier = Depends(get_notifier)
) -> ReminderDispatcher:
    return ReminderDispatcher(
        notifier, clock=clock, send_timeout=settings.NOTIFIER_TIMEOUT_SECONDS
    )

# --------------------------------------------
# Tasks under a quote
# --------------------------------------------

@app.get("/v1/quotes/{quote_id}/tasks", response_model=List[Task])
async def list_quote_tasks(
    quote_id: int,
    status_: Optional[TaskStatus] = Query(None, alias="status"),
    priority: Optional[TaskPriority] = None,
    search: Optional[str] = None,
    overdue_only: bool = False,
    service: TaskService = Depends(get_task_service),
):
    filters = TaskFilters(
        status=status_, priority=priority, search=search, overdue_only=overdue_only
    )
    return await service.list_tasks(quote_id, filters)


@app.post("/v1/quotes/{quote_id}/tasks", response_model=Task, status_code=status.HTTP_201_CREATED)
async def create_quote_task(
    quote_id: int,
    body: TaskCreateRequest,
    service: TaskService = Depends(get_task_service),
):
    payload = TaskCreate(**body.model_dump(exclude={"company_id"}))
    return await service.create_task(quote_id, body.company_id, payload)


@app.get("/v1/quotes/{quote_id}/tasks/summary", response_model=ProgressSummary)
async def quote_task_summary(quote_id: int, service: TaskService = Depends(get_task_service)):
    return await service.get_progress_summary(quote_id)

# --------------------------------------------
# Single task
# --------------------------------------------

@app.get("/v1/tasks/{task_id}", response_model=Task)
async def get_task(task_id: int, service: TaskService = Depends(get_task_service)):
    return await service.get_task(task_id)


@app.put("/v1/tasks/{task_id}", response_model=Task)
async def update_task(
    task_id: int, body: TaskUpdate, service: TaskService = Depends(get_task_service)
):
    return await service.update_task(task_id, body)


@app.delete("/v1/tasks/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(task_id: int, service: TaskService = Depends(get_task_service)):
    await service.delete_task(task_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.post("/v1/tasks/{task_id}/reminder", response_model=Task)
async def trigger_task_reminder(
    task_id: int, dispatcher: ReminderDispatcher = Depends(get_dispatcher)
):
    return await dispatcher.trigger_one(task_id)


@app.get("/v1/tasks/{task_id}/reminders", response_model=List[ReminderLog])
async def task_reminder_logs(
    task_id: int,
    limit: Optional[int] = Query(None, ge=1, le=500),
    service: TaskService = Depends(get_task_service),
):
    return await service.get_reminder_logs(task_id, limit)

# --------------------------------------------
# Batch run (submit and forget)
# --------------------------------------------

@app.post("/v1/reminders/run", response_model=ReminderJob, status_code=status.HTTP_202_ACCEPTED)
async def run_reminders(channel: Optional[str] = None, limit: Optional[int] = None):
    channel = channel or settings.REMINDER_DEFAULT_CHANNEL
    limit = limit if limit is not None else settings.REMINDER_BATCH_LIMIT
    if channel not in REMINDER_CHANNELS:
        raise ValidationError(f"Unknown reminder channel '{channel}'")
    if limit < 1 or limit > MAX_BATCH_LIMIT:
        raise ValidationError(f"limit must be between 1 and {MAX_BATCH_LIMIT}")

    job_id = str(uuid.uuid4())
    celery_app.send_task(
        "app.workers.reminder.process_due",
        kwargs={"channel": channel, "limit": limit},
        task_id=job_id,
        queue="reminder",
    )
    _LOGGER.info("Queued reminder batch %s (%s, limit=%d)", job_id, channel, limit)
    return ReminderJob(job_id=job_id, channel=channel, limit=limit)

# --------------------------------------------
# Inbound replies
# --------------------------------------------

@app.post("/v1/webhooks/pinpoint")
async def pinpoint_webhook(request: Request, clock: Clock = Depends(get_clock)):
    provided = request.headers.get("x-pinpoint-secret") or request.query_params.get("secret")
    if not pinpoint.verify_secret(settings.PINPOINT_WEBHOOK_SECRET, provided):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid webhook secret")

    try:
        payload = await request.json()
    except ValueError:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Body must be JSON")

    recorded = 0
    for reply in pinpoint.extract_replies(payload):
        try:
            await reply_interpreter.record_reply(
                reply.task_id,
                reply.message,
                from_=reply.reply_from,
                provider_payload=reply.payload,
                clock=clock,
            )
            recorded += 1
        except NotFoundError:
            _LOGGER.warning("Reply for unknown task %s ignored", reply.task_id)
        except Exception:  # noqa: BLE001
            _LOGGER.exception("Reply for task %s could not be recorded", reply.task_id)
    return {"success": True, "recorded": recorded}

# --------------------------------------------
# Metrics
# --------------------------------------------

@app.get("/metrics")
async def metrics_endpoint():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
