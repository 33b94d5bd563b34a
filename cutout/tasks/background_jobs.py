from __future__ import annotations

import io
import logging
import time
import traceback
import zipfile
from pathlib import Path

from rq import get_current_job

from cutout.application.remove_background_use_case import RemoveBackgroundUseCase
from cutout.domain.background_remover import RemovalOptions
from cutout.domain.image import IconStyle
from cutout.infrastructure.white_background_remover import WhiteBackgroundRemover

logger = logging.getLogger("cutout.jobs")

use_case = RemoveBackgroundUseCase(WhiteBackgroundRemover())


def _update_job_meta(**entries: str | int | float) -> None:
    job = get_current_job()
    if not job:
        return
    job.meta.update(entries)
    job.save_meta()


def _safe_stem(name: str, fallback: str) -> str:
    stem = Path(name).stem
    safe = "".join(ch for ch in stem if ch.isalnum() or ch in ("-", "_"))
    return safe or fallback


def _unique_entry_name(stem: str, used_names: set[str]) -> str:
    candidate = f"{stem}.png"
    suffix = 2
    while candidate in used_names:
        candidate = f"{stem}-{suffix}.png"
        suffix += 1
    used_names.add(candidate)
    return candidate


def _build_options(options: dict[str, float] | None) -> RemovalOptions:
    return RemovalOptions(**options) if options else RemovalOptions()


def process_single_image_job(
    image_bytes: bytes,
    original_name: str,
    style: str,
    options: dict[str, float] | None = None,
) -> dict[str, str | bytes]:
    job = get_current_job()
    job_id = job.id if job else "sync"
    _update_job_meta(progress=5, stage="prepare", started_at_ts=time.time())

    try:
        icon_style = IconStyle.from_label(style)
        removal_options = _build_options(options)
        _update_job_meta(progress=30, stage="remove_background")
        output_png = use_case.execute(image_bytes, icon_style, removal_options)
        _update_job_meta(progress=100, stage="done")
    except Exception as exc:  # noqa: BLE001
        logger.warning("job %s failed: %s", job_id, exc)
        _update_job_meta(progress=0, stage="failed", error=str(exc), traceback=traceback.format_exc())
        raise

    return {
        "kind": "single",
        "filename": f"{_safe_stem(original_name, 'result')}.png",
        "content_type": "image/png",
        "data": output_png,
    }


def process_batch_images_job(
    files_payload: list[dict[str, bytes | str]],
    style: str,
    options: dict[str, float] | None = None,
) -> dict[str, str | bytes]:
    job = get_current_job()
    job_id = job.id if job else "sync"
    total = max(1, len(files_payload))
    _update_job_meta(progress=3, stage="prepare", total=total, current=0, started_at_ts=time.time())

    try:
        icon_style = IconStyle.from_label(style)
        removal_options = _build_options(options)
        output_buffer = io.BytesIO()
        used_names: set[str] = set()

        with zipfile.ZipFile(output_buffer, mode="w", compression=zipfile.ZIP_DEFLATED) as archive:
            for index, payload in enumerate(files_payload, start=1):
                name = str(payload.get("name") or f"image-{index}.png")
                image_bytes = payload["bytes"]
                if not isinstance(image_bytes, bytes):
                    raise ValueError(f"Invalid payload bytes for {name}")

                output_png = use_case.execute(image_bytes, icon_style, removal_options)
                entry_name = _unique_entry_name(_safe_stem(name, f"image-{index}"), used_names)
                archive.writestr(entry_name, output_png)
                progress = int((index / total) * 95)
                _update_job_meta(progress=progress, stage="processing", total=total, current=index)

        _update_job_meta(progress=100, stage="done")
    except Exception as exc:  # noqa: BLE001
        logger.warning("batch job %s failed: %s", job_id, exc)
        _update_job_meta(progress=0, stage="failed", error=str(exc), traceback=traceback.format_exc())
        raise

    return {
        "kind": "batch",
        "filename": "removed-backgrounds.zip",
        "content_type": "application/zip",
        "data": output_buffer.getvalue(),
    }
