"""Batch job state and sequential (input x task) conversion."""
import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Optional

from converter.conversion.models import ConversionTask, ConvertedImage, ImageInput, ProgressEvent, ProgressStage
from converter.conversion.orchestrator import ConversionOrchestrator
from converter.conversion.progress import CancellationToken, ProgressStream
from converter.errors import ConversionError, ErrorKind

logger = logging.getLogger("converter.batch")


@dataclass
class BatchJob:
    batch_id: str
    status: str  # "processing" | "completed" | "failed" | "cancelled"
    total_operations: int = 0
    completed_operations: int = 0
    progress: float = 0.0
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "batch_id": self.batch_id,
            "status": self.status,
            "total_operations": self.total_operations,
            "completed_operations": self.completed_operations,
            "progress": self.progress,
            "error": self.error,
        }


class BatchCoordinator:
    """Runs every (input, task) pair through one orchestrator, input-major, one at a time.

    All-or-nothing: on the first failure or on cancellation the batch stops and raises;
    results produced so far are dropped. The job record keeps how many units completed.
    """

    def __init__(self, orchestrator: ConversionOrchestrator, store=None):
        self._orchestrator = orchestrator
        self._store = store
        self._jobs: dict[str, BatchJob] = {}
        self._running = False
        self._token: Optional[CancellationToken] = None

    @property
    def is_running(self) -> bool:
        return self._running

    def cancel(self) -> None:
        """Stop before the next unit; the unit in flight runs to completion."""
        if self._token is not None:
            self._token.cancel()

    def get_job(self, batch_id: str) -> Optional[BatchJob]:
        job = self._jobs.get(batch_id)
        if job is not None or self._store is None:
            return job
        row = self._store.get_batch(batch_id)
        if row is None:
            return None
        job = BatchJob(**row)
        self._jobs[batch_id] = job
        return job

    def create_job(self, total_operations: int, batch_id: Optional[str] = None) -> BatchJob:
        job = BatchJob(batch_id=batch_id or str(uuid.uuid4()), status="processing", total_operations=total_operations)
        self._jobs[job.batch_id] = job
        if self._store is not None:
            self._store.save_batch(job)
        return job

    async def convert_batch(
        self,
        inputs: Iterable[ImageInput],
        tasks: Iterable[ConversionTask],
        *,
        token: Optional[CancellationToken] = None,
        progress: Optional[ProgressStream] = None,
        batch_id: Optional[str] = None,
        on_results: Optional[Callable[[list[ConvertedImage]], Awaitable[None]]] = None,
    ) -> list[ConvertedImage]:
        """Convert every (input, task) pair or none of them.

        ``on_results`` runs after the last unit and before the job is marked completed;
        if it raises, the job ends ``failed`` instead.
        """
        if self._running:
            raise ConversionError.busy("batch")
        inputs = list(inputs)
        tasks = list(tasks)
        total = len(inputs) * len(tasks)
        job = self.get_job(batch_id) if batch_id else None
        if job is None:
            job = self.create_job(total, batch_id)
        else:
            self._restart(job, total)
        self._running = True
        self._token = token or CancellationToken()
        try:
            results = await self._run(job, inputs, tasks, self._token, progress)
            if on_results is not None:
                await on_results(results)
        except ConversionError as e:
            self._finish(job, "cancelled" if e.kind is ErrorKind.CANCELLED else "failed", e, progress)
            raise
        except asyncio.CancelledError:
            self._finish(job, "cancelled", ConversionError.cancelled("task cancelled"), progress)
            raise
        except Exception as e:
            error = ConversionError(ErrorKind.UNKNOWN, f"Unexpected error: {e}", detail=type(e).__name__)
            self._finish(job, "failed", error, progress)
            raise error from e
        finally:
            self._running = False
            self._token = None
        self._finish(job, "completed", None, progress)
        return results

    def _restart(self, job: BatchJob, total: int) -> None:
        job.status = "processing"
        job.total_operations = total
        job.completed_operations = 0
        job.progress = 0.0
        job.error = None
        if self._store is not None:
            self._store.update_batch(job)

    async def _run(self, job, inputs, tasks, token, progress) -> list[ConvertedImage]:
        results: list[ConvertedImage] = []
        for index, image in enumerate(inputs):
            for task in tasks:
                token.raise_if_cancelled(
                    detail=f"{job.completed_operations} of {job.total_operations} operations completed"
                )
                job.progress = job.completed_operations / job.total_operations * 100.0
                if progress is not None:
                    progress.emit(ProgressEvent(
                        file_id=job.batch_id,
                        progress=job.progress,
                        stage=ProgressStage.CONVERTING,
                        message=f"Converting {image.source_name or f'input {index}'} to {task.to_format.value}",
                        file_index=index,
                    ))
                results.append(await self._orchestrator.convert(image, task.to_format, task.options))
                job.completed_operations += 1
        return results

    def _finish(self, job: BatchJob, status: str, error: Optional[ConversionError], progress) -> None:
        job.status = status
        job.error = error.message if error is not None else None
        if status == "completed":
            job.progress = 100.0
        if progress is not None:
            stage = {
                "completed": ProgressStage.COMPLETED,
                "cancelled": ProgressStage.CANCELLED,
            }.get(status, ProgressStage.ERROR)
            progress.emit(ProgressEvent(
                file_id=job.batch_id,
                progress=job.progress,
                stage=stage,
                message=f"Batch {status}: {job.completed_operations} of {job.total_operations} operations",
                error=job.error if stage is ProgressStage.ERROR else None,
            ))
        if self._store is not None:
            self._store.update_batch(job)
        if error is None:
            logger.info("Batch %s completed (%s operations)", job.batch_id, job.total_operations)
        else:
            logger.warning(
                "Batch %s %s after %s of %s operations: %s",
                job.batch_id, status, job.completed_operations, job.total_operations, error.message,
            )
