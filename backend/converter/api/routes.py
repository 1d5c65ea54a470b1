"""API routes for format detection, conversion, batches, telemetry and history."""
import asyncio
import json
import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, HTTPException, Query, Request, UploadFile
from fastapi.responses import FileResponse

from converter.config import MAX_BATCH_INPUTS, MAX_IMAGE_SIZE_BYTES, MAX_IMAGE_SIZE_MB
from converter.conversion.formats import default_options_for, get_format_info
from converter.conversion.models import ConversionOptions, ConversionTask, FormatId, ImageInput
from converter.conversion.progress import CancellationToken, ProgressStream
from converter.errors import ConversionError, ErrorKind
from converter.runtime import ConverterRuntime
from converter.telemetry.report import generate_report

logger = logging.getLogger("converter.api")
router = APIRouter(prefix="/api", tags=["converter"])


def get_runtime(request: Request) -> ConverterRuntime:
    return request.app.state.runtime


def http_error(error: ConversionError) -> HTTPException:
    """Map a typed conversion error to an HTTP status. Body carries kind/message/detail."""
    if error.detail == "engine_not_ready":
        status = 503
    elif error.detail == "busy" or error.kind is ErrorKind.CANCELLED:
        status = 409
    elif error.kind is ErrorKind.FORMAT:
        status = 400
    elif error.kind is ErrorKind.MEMORY:
        status = 507
    else:
        status = 500
    return HTTPException(status, detail=error.to_dict())


async def _read_upload(file: UploadFile) -> bytes:
    chunks: list[bytes] = []
    total = 0
    while chunk := await file.read(1024 * 1024):
        total += len(chunk)
        if total > MAX_IMAGE_SIZE_BYTES:
            raise HTTPException(413, f"File too large: {file.filename} (max {MAX_IMAGE_SIZE_MB} MB)")
        chunks.append(chunk)
    if not total:
        raise HTTPException(400, f"Empty file: {file.filename}")
    return b"".join(chunks)


def _parse_options(options: Optional[str], **explicit) -> ConversionOptions:
    """JSON options object (camelCase keys accepted); explicit query parameters win."""
    base = ConversionOptions()
    if options:
        try:
            data = json.loads(options)
        except json.JSONDecodeError as e:
            raise HTTPException(400, f"Invalid options JSON: {e}")
        if not isinstance(data, dict):
            raise HTTPException(400, "options must be a JSON object")
        base = ConversionOptions.from_dict(data)
    return ConversionOptions(**explicit).merged_over(base)


def _parse_formats(formats: str) -> list[str]:
    return [f.strip().lower() for f in formats.split(",") if f.strip()] or ["webp"]


@router.get("/health")
def health(runtime: ConverterRuntime = Depends(get_runtime)):
    return {"status": "ok", "engine_ready": runtime.loader.ready}


@router.get("/engine")
def engine_status(runtime: ConverterRuntime = Depends(get_runtime)):
    return {
        **runtime.engine_status(),
        "supported_formats": [f.value for f in runtime.orchestrator.supported_formats()],
    }


@router.post("/engine/reload")
async def reload_engine(runtime: ConverterRuntime = Depends(get_runtime)):
    """Tear the engine down and load it again (e.g. after a failed first load)."""
    async with runtime.lock:
        await runtime.loader.release()
        await runtime.load_engine()
    return runtime.engine_status()


@router.get("/formats")
def get_formats(runtime: ConverterRuntime = Depends(get_runtime)):
    out = []
    for fmt in runtime.orchestrator.supported_formats():
        info = get_format_info(fmt)
        out.append({"id": fmt.value, **info.to_dict(), "default_options": default_options_for(fmt).to_dict()})
    return {"formats": out}


@router.post("/detect")
async def detect_format(file: UploadFile = File(...), runtime: ConverterRuntime = Depends(get_runtime)):
    data = await _read_upload(file)
    fmt = runtime.detector.detect(data, file.filename)
    info = get_format_info(fmt)
    return {"filename": file.filename, "format": fmt.value, "info": info.to_dict() if info else None}


@router.post("/convert")
async def convert_file(
    file: UploadFile = File(...),
    to_format: str = Query(..., description="Target format, e.g. webp"),
    from_format: Optional[str] = Query(None, description="Override the detected source format"),
    quality: Optional[float] = Query(None, description="0-1, lossy formats"),
    compression_level: Optional[int] = Query(None, description="0-9, lossless formats"),
    progressive: Optional[bool] = Query(None),
    preserve_metadata: Optional[bool] = Query(None),
    options: Optional[str] = Query(None, description='JSON options, e.g. {"quality": 0.7, "compressionLevel": 4}'),
    runtime: ConverterRuntime = Depends(get_runtime),
):
    """Convert one uploaded image. Returns the result record, a download URL and the progress events."""
    applied = _parse_options(
        options,
        quality=quality,
        compression_level=compression_level,
        progressive=progressive,
        preserve_metadata=preserve_metadata,
    )
    data = await _read_upload(file)
    source = FormatId.parse(from_format) if from_format else runtime.detector.detect(data, file.filename)
    image = ImageInput(raw_bytes=data, declared_format=source, source_name=file.filename or "")
    progress = ProgressStream()
    async with runtime.lock:
        try:
            result = await runtime.orchestrator.convert(image, to_format, applied, progress=progress)
        except ConversionError as e:
            raise http_error(e)
    await asyncio.to_thread(runtime.save_output, result)
    return {
        **result.to_dict(),
        "download_url": f"/api/download/{result.id}",
        "progress": [event.to_dict() for event in progress.drain()],
    }


@router.get("/download/{file_id}")
def download(file_id: str, runtime: ConverterRuntime = Depends(get_runtime)):
    if "/" in file_id or "\\" in file_id or ".." in file_id:
        raise HTTPException(400, "Invalid file id")
    path = runtime.find_output(file_id)
    if path is None:
        raise HTTPException(404, "File not found")
    info = get_format_info(path.suffix)
    media_type = info.mime_type if info else "application/octet-stream"
    return FileResponse(path, filename=path.name, media_type=media_type)


async def _run_batch(
    runtime: ConverterRuntime,
    batch_id: str,
    inputs: list[ImageInput],
    tasks: list[ConversionTask],
    token: CancellationToken,
):
    """Run a batch after the response is sent.

    Outputs are written only when every unit succeeded, and before the job reads completed.
    """

    async def write_outputs(results):
        for result in results:
            await asyncio.to_thread(runtime.save_output, result, batch_id)

    try:
        async with runtime.lock:
            await runtime.batches.convert_batch(
                inputs, tasks, token=token, batch_id=batch_id, on_results=write_outputs,
            )
    except ConversionError as e:
        logger.info("Batch %s produced no outputs (%s: %s)", batch_id, e.kind.value, e.message)
    finally:
        runtime.batch_tokens.pop(batch_id, None)


@router.post("/batch")
async def start_batch(
    background_tasks: BackgroundTasks,
    files: list[UploadFile] = File(...),
    formats: str = Query("webp", description="Comma-separated target formats"),
    quality: Optional[float] = Query(None),
    compression_level: Optional[int] = Query(None),
    options: Optional[str] = Query(None, description="JSON options applied to every format"),
    runtime: ConverterRuntime = Depends(get_runtime),
):
    """Start a background batch (every file x every format). Returns the batch record to poll."""
    if len(files) > MAX_BATCH_INPUTS:
        raise HTTPException(400, f"Max {MAX_BATCH_INPUTS} files per batch")
    options = _parse_options(options, quality=quality, compression_level=compression_level)
    tasks = [ConversionTask(from_format=None, to_format=FormatId.parse(f), options=options) for f in _parse_formats(formats)]
    inputs = []
    for file in files:
        data = await _read_upload(file)
        inputs.append(ImageInput(
            raw_bytes=data,
            declared_format=runtime.detector.detect(data, file.filename),
            source_name=file.filename or "",
        ))
    job = runtime.batches.create_job(len(inputs) * len(tasks))
    token = CancellationToken()
    runtime.batch_tokens[job.batch_id] = token
    background_tasks.add_task(_run_batch, runtime, job.batch_id, inputs, tasks, token)
    return job.to_dict()


@router.get("/batch/{batch_id}")
def get_batch_status(batch_id: str, runtime: ConverterRuntime = Depends(get_runtime)):
    job = runtime.batches.get_job(batch_id)
    if job is None:
        raise HTTPException(404, "Batch not found")
    outputs = runtime.store.batch_conversions(batch_id) if job.status == "completed" else []
    for entry in outputs:
        entry["download_url"] = f"/api/download/{entry['id']}"
    return {**job.to_dict(), "outputs": outputs}


@router.post("/batch/{batch_id}/cancel")
def cancel_batch(batch_id: str, runtime: ConverterRuntime = Depends(get_runtime)):
    """Request cancellation; the unit in flight finishes first."""
    job = runtime.batches.get_job(batch_id)
    if job is None:
        raise HTTPException(404, "Batch not found")
    if job.status != "processing":
        raise HTTPException(409, f"Batch already {job.status}")
    token = runtime.batch_tokens.get(batch_id)
    if token is not None:
        token.cancel()
    return {**job.to_dict(), "cancel_requested": True}


@router.get("/performance/report")
def performance_report(runtime: ConverterRuntime = Depends(get_runtime)):
    return generate_report(runtime.telemetry.history).to_dict()


@router.get("/performance/history")
def performance_history(
    limit: int = Query(100, ge=1, le=1000),
    runtime: ConverterRuntime = Depends(get_runtime),
):
    history = runtime.telemetry.history[-limit:]
    latest = runtime.telemetry.latest
    return {
        "snapshots": [s.to_dict() for s in history],
        "latest": latest.to_dict() if latest else None,
        "monitoring": runtime.telemetry.is_monitoring,
    }


@router.post("/performance/reset")
def reset_performance(runtime: ConverterRuntime = Depends(get_runtime)):
    runtime.telemetry.reset()
    return {"status": "reset"}


@router.get("/history/stats")
def history_stats(runtime: ConverterRuntime = Depends(get_runtime)):
    return runtime.store.get_stats()


@router.get("/history/recent")
def history_recent(
    limit: int = Query(50, ge=1, le=500),
    runtime: ConverterRuntime = Depends(get_runtime),
):
    return {"conversions": runtime.store.recent_conversions(limit)}


@router.delete("/history")
def clear_history(runtime: ConverterRuntime = Depends(get_runtime)):
    return {"deleted": runtime.store.clear_history()}
