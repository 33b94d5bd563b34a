from __future__ import annotations

import json
import logging
import time
import uuid
from collections import defaultdict, deque
from dataclasses import asdict, dataclass
from datetime import datetime, timezone

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import PlainTextResponse, Response
from pydantic import BaseModel
from rq import Retry
from rq.job import Job
from rq.registry import FailedJobRegistry, StartedJobRegistry
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware

from cutout.application.remove_background_use_case import RemoveBackgroundUseCase
from cutout.config import settings
from cutout.domain.background_remover import (
    EDGE_ALPHA_FLOOR,
    FILL_TOLERANCE,
    OUTLINE_TOLERANCE,
    RemovalOptions,
)
from cutout.domain.errors import CutoutError
from cutout.domain.image import IconStyle
from cutout.infrastructure.image_validation import ImageValidationError, validate_image_bytes
from cutout.infrastructure.jobs import get_queue, get_redis_connection
from cutout.infrastructure.metrics import metrics
from cutout.infrastructure.raster_codec import data_uri_to_bytes
from cutout.infrastructure.white_background_remover import WhiteBackgroundRemover

logger = logging.getLogger("cutout.api")
if not logger.handlers:
    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))

app = FastAPI(title="Icon Background Cutout")

queue = get_queue()
redis_connection = get_redis_connection()
use_case = RemoveBackgroundUseCase(WhiteBackgroundRemover())


@dataclass
class SlidingWindow:
    timestamps: deque[float]


class RequestContextMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: FastAPI) -> None:
        super().__init__(app)
        self._buckets: dict[str, SlidingWindow] = defaultdict(lambda: SlidingWindow(deque()))

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        start = time.perf_counter()

        request.state.request_id = request_id
        metrics.incr("http_requests_total")

        if request.url.path.startswith("/api/"):
            client_ip = request.client.host if request.client else "unknown"
            now = time.time()
            bucket = self._buckets[client_ip]
            window_start = now - 60.0

            while bucket.timestamps and bucket.timestamps[0] < window_start:
                bucket.timestamps.popleft()

            if len(bucket.timestamps) >= settings.rate_limit_per_minute:
                metrics.incr("rate_limited_total")
                return Response(
                    content='{"detail":"Rate limit exceeded. Try again in a minute."}',
                    status_code=429,
                    media_type="application/json",
                    headers={"x-request-id": request_id},
                )

            bucket.timestamps.append(now)

        response = await call_next(request)
        elapsed_ms = int((time.perf_counter() - start) * 1000)

        response.headers["x-request-id"] = request_id
        logger.info(
            json.dumps(
                {
                    "request_id": request_id,
                    "method": request.method,
                    "path": str(request.url.path),
                    "status": response.status_code,
                    "elapsed_ms": elapsed_ms,
                }
            )
        )
        return response


app.add_middleware(RequestContextMiddleware)


class DataUriCutoutRequest(BaseModel):
    dataUri: str
    style: str | None = None
    outlineTolerance: int = OUTLINE_TOLERANCE
    fillTolerance: int = FILL_TOLERANCE
    edgeAlphaFloor: float = EDGE_ALPHA_FLOOR


class DataUriCutoutResponse(BaseModel):
    dataUri: str
    style: str


def _parse_style(style: str | None) -> IconStyle:
    try:
        return IconStyle.from_label(style or settings.default_style)
    except CutoutError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def _validate_options(outline_tolerance: int, fill_tolerance: int, edge_alpha_floor: float) -> RemovalOptions:
    try:
        return RemovalOptions(
            outline_tolerance=outline_tolerance,
            fill_tolerance=fill_tolerance,
            edge_alpha_floor=edge_alpha_floor,
        )
    except CutoutError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def _ensure_image_content_type(file: UploadFile) -> None:
    if not file.content_type or not file.content_type.startswith("image/"):
        raise HTTPException(status_code=400, detail=f"{file.filename or 'file'} is not an image")


def _read_and_validate_image(file: UploadFile, image_bytes: bytes) -> None:
    _ensure_image_content_type(file)
    if len(image_bytes) > settings.max_image_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"{file.filename or 'file'} is too large. Max size is {settings.max_image_bytes // (1024 * 1024)} MB",
        )
    try:
        validate_image_bytes(image_bytes, max_pixels=settings.max_image_pixels)
    except ImageValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def _enqueue_retry() -> Retry | None:
    if settings.job_retry_max <= 0:
        return None
    intervals = settings.job_retry_intervals
    if not intervals:
        return Retry(max=settings.job_retry_max)
    return Retry(max=settings.job_retry_max, interval=list(intervals))


def _fetch_job(job_id: str) -> Job:
    try:
        return Job.fetch(job_id, connection=redis_connection)
    except Exception as exc:  # noqa: BLE001
        raise HTTPException(status_code=404, detail="Job not found") from exc


def _status_payload(job: Job) -> dict:
    status = job.get_status(refresh=True)
    meta = job.meta or {}

    payload: dict[str, str | int | None] = {
        "job_id": job.id,
        "status": status,
        "download_path": None,
        "filename": None,
        "progress": int(meta.get("progress", 0)),
        "stage": str(meta.get("stage", "queued")),
        "error": None,
        "eta_seconds": None,
    }

    if status == "failed":
        payload["error"] = str(meta.get("error") or "Job failed")

    if status == "finished":
        result = job.result or {}
        filename = result.get("filename") if isinstance(result, dict) else None
        payload["filename"] = filename
        payload["download_path"] = f"/api/jobs/{job.id}/download"
        payload["progress"] = 100
        payload["stage"] = "done"
        payload["eta_seconds"] = 0
    elif status in {"started", "queued"}:
        started_at = float(meta.get("started_at_ts", 0) or 0)
        progress = int(payload["progress"] or 0)
        if started_at > 0 and progress > 0:
            elapsed = max(1, int(time.time() - started_at))
            estimated_total = max(elapsed, int((elapsed / progress) * 100))
            payload["eta_seconds"] = max(0, estimated_total - elapsed)

    return payload


def _queue_stats() -> tuple[int, int, int]:
    try:
        started_registry = StartedJobRegistry(name=queue.name, connection=redis_connection)
        failed_registry = FailedJobRegistry(name=queue.name, connection=redis_connection)
        return queue.count, len(started_registry.get_job_ids()), len(failed_registry.get_job_ids())
    except Exception:  # noqa: BLE001
        return 0, 0, 0


@app.post("/api/remove-bg")
async def remove_bg(
    file: UploadFile = File(...),
    style: str | None = Form(None),
    outline_tolerance: int = Form(OUTLINE_TOLERANCE),
    fill_tolerance: int = Form(FILL_TOLERANCE),
    edge_alpha_floor: float = Form(EDGE_ALPHA_FLOOR),
) -> Response:
    icon_style = _parse_style(style)
    options = _validate_options(outline_tolerance, fill_tolerance, edge_alpha_floor)
    image_bytes = await file.read()
    _read_and_validate_image(file, image_bytes)

    try:
        output_png = await run_in_threadpool(use_case.execute, image_bytes, icon_style, options)
    except CutoutError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    return Response(content=output_png, media_type="image/png", headers={"x-icon-style": icon_style.value})


@app.post("/api/remove-bg/data-uri", response_model=DataUriCutoutResponse)
async def remove_bg_data_uri(body: DataUriCutoutRequest) -> DataUriCutoutResponse:
    icon_style = _parse_style(body.style)
    options = _validate_options(body.outlineTolerance, body.fillTolerance, body.edgeAlphaFloor)
    try:
        image_bytes = data_uri_to_bytes(body.dataUri)
    except CutoutError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    if len(image_bytes) > settings.max_image_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"Image is too large. Max size is {settings.max_image_bytes // (1024 * 1024)} MB",
        )
    try:
        validate_image_bytes(image_bytes, max_pixels=settings.max_image_pixels)
    except ImageValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    try:
        data_uri = await run_in_threadpool(use_case.execute_data_uri, body.dataUri, icon_style, options)
    except CutoutError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    return DataUriCutoutResponse(dataUri=data_uri, style=icon_style.value)


@app.post("/api/jobs/remove-bg")
async def enqueue_remove_bg(
    file: UploadFile = File(...),
    style: str | None = Form(None),
    outline_tolerance: int = Form(OUTLINE_TOLERANCE),
    fill_tolerance: int = Form(FILL_TOLERANCE),
    edge_alpha_floor: float = Form(EDGE_ALPHA_FLOOR),
) -> dict[str, str]:
    icon_style = _parse_style(style)
    options = _validate_options(outline_tolerance, fill_tolerance, edge_alpha_floor)
    image_bytes = await file.read()
    _read_and_validate_image(file, image_bytes)

    retry = _enqueue_retry()
    job = queue.enqueue(
        "cutout.tasks.background_jobs.process_single_image_job",
        image_bytes,
        file.filename or "image.png",
        icon_style.value,
        asdict(options),
        result_ttl=settings.job_result_ttl_seconds,
        failure_ttl=settings.job_failure_ttl_seconds,
        retry=retry,
    )

    metrics.incr("jobs_submitted_total")
    return {"job_id": job.id, "status": "queued"}


@app.post("/api/jobs/remove-bg-batch")
async def enqueue_remove_bg_batch(
    files: list[UploadFile] = File(...),
    style: str | None = Form(None),
    outline_tolerance: int = Form(OUTLINE_TOLERANCE),
    fill_tolerance: int = Form(FILL_TOLERANCE),
    edge_alpha_floor: float = Form(EDGE_ALPHA_FLOOR),
) -> dict[str, str]:
    if not files:
        raise HTTPException(status_code=400, detail="No files uploaded")
    if len(files) > settings.max_batch_files:
        raise HTTPException(status_code=400, detail=f"Max {settings.max_batch_files} files per batch")

    icon_style = _parse_style(style)
    options = _validate_options(outline_tolerance, fill_tolerance, edge_alpha_floor)

    payload: list[dict[str, bytes | str]] = []
    for index, file in enumerate(files, start=1):
        image_bytes = await file.read()
        try:
            _read_and_validate_image(file, image_bytes)
        except HTTPException as exc:
            raise HTTPException(status_code=exc.status_code, detail=f"file-{index}: {exc.detail}") from exc
        payload.append({"name": file.filename or f"file-{index}.png", "bytes": image_bytes})

    retry = _enqueue_retry()
    job = queue.enqueue(
        "cutout.tasks.background_jobs.process_batch_images_job",
        payload,
        icon_style.value,
        asdict(options),
        result_ttl=settings.job_result_ttl_seconds,
        failure_ttl=settings.job_failure_ttl_seconds,
        retry=retry,
    )

    metrics.incr("jobs_submitted_total")
    return {"job_id": job.id, "status": "queued"}


@app.get("/api/jobs/{job_id}")
def get_job_status(job_id: str) -> dict:
    return _status_payload(_fetch_job(job_id))


@app.post("/api/jobs/{job_id}/cancel")
def cancel_job(job_id: str) -> dict[str, str]:
    job = _fetch_job(job_id)

    status = job.get_status(refresh=True)
    if status in {"finished", "failed", "stopped", "canceled"}:
        return {"job_id": job.id, "status": status}

    job.cancel()
    metrics.incr("jobs_canceled_total")
    return {"job_id": job.id, "status": "canceled"}


@app.post("/api/jobs/{job_id}/retry")
def retry_job(job_id: str) -> dict[str, str]:
    job = _fetch_job(job_id)

    if job.get_status(refresh=True) != "failed":
        raise HTTPException(status_code=409, detail="Only failed jobs can be retried")

    retry = _enqueue_retry()
    try:
        requeued = queue.enqueue_call(
            func=job.func_name,
            args=job.args,
            kwargs=job.kwargs,
            result_ttl=settings.job_result_ttl_seconds,
            failure_ttl=settings.job_failure_ttl_seconds,
            retry=retry,
        )
    except Exception as exc:  # noqa: BLE001
        raise HTTPException(status_code=500, detail="Failed to requeue job") from exc

    metrics.incr("jobs_retried_total")
    return {"job_id": requeued.id, "status": "queued"}


@app.get("/api/failed-jobs")
def list_failed_jobs(limit: int = 20) -> dict:
    registry = FailedJobRegistry(name=queue.name, connection=redis_connection)
    job_ids = registry.get_job_ids()[: max(1, min(limit, 100))]
    items: list[dict] = []

    for job_id in job_ids:
        try:
            job = Job.fetch(job_id, connection=redis_connection)
            payload = _status_payload(job)
            payload["created_at"] = (
                job.created_at.replace(tzinfo=timezone.utc).isoformat() if job.created_at else None
            )
            items.append(payload)
        except Exception:  # noqa: BLE001
            continue

    return {"items": items}


@app.get("/api/jobs/{job_id}/download")
def download_job_result(job_id: str) -> Response:
    job = _fetch_job(job_id)

    if job.get_status(refresh=True) != "finished":
        raise HTTPException(status_code=409, detail="Job is not finished")

    result = job.result or {}
    if not isinstance(result, dict) or "data" not in result:
        raise HTTPException(status_code=500, detail="Job result data not found")

    filename = str(result.get("filename") or "result.bin")
    content_type = str(result.get("content_type") or "application/octet-stream")

    metrics.incr("downloads_total")
    return Response(
        content=result["data"],
        media_type=content_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.get("/api/metrics")
def get_metrics() -> dict:
    queue_depth, queue_started, queue_failed = _queue_stats()
    metrics.set_gauge("queue_depth", queue_depth)
    metrics.set_gauge("queue_started", queue_started)
    metrics.set_gauge("queue_failed", queue_failed)
    snapshot = metrics.snapshot()
    snapshot["timestamp"] = int(datetime.now(timezone.utc).timestamp())
    return snapshot


@app.get("/api/metrics/prometheus")
def get_prometheus_metrics() -> PlainTextResponse:
    queue_depth, queue_started, queue_failed = _queue_stats()
    metrics.set_gauge("queue_depth", queue_depth)
    metrics.set_gauge("queue_started", queue_started)
    metrics.set_gauge("queue_failed", queue_failed)
    return PlainTextResponse(metrics.to_prometheus_text(), media_type="text/plain; version=0.0.4")


@app.get("/api/health")
def health() -> dict[str, str]:
    return {"status": "ok"}
