"""Sequential in-process ingestion queue.

Jobs are consumed in FIFO order by a single worker task that starts lazily on
the first enqueue and exits once the queue is empty. Each job runs its stages
strictly in order; any failure marks that policy ``failed`` and the worker
moves on to the next job. Jobs are never persisted or retried.
"""

import asyncio
from pathlib import Path
from typing import Optional, Union
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from policy_rag.core.config import settings
from policy_rag.core.exceptions import DatabaseError, IngestionError, PipelineError, PolicyNotFoundError
from policy_rag.database.models import PolicyStatus
from policy_rag.repositories.chunk_repository import ChunkRepository
from policy_rag.repositories.policy_repository import PolicyRepository
from policy_rag.schemas.ingestion import IngestionJob, PolicyContext
from policy_rag.services.generation.fact_extraction import FactExtractionService
from policy_rag.services.ingestion.document_processor import DocumentProcessor
from policy_rag.utils.logging import get_logger

LOGGER = get_logger(__name__)

DRAIN = "drain"
ABANDON = "abandon"


class IngestionQueue:
    """Owns the job FIFO and the single worker that drains it."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        document_processor: DocumentProcessor,
        fact_extractor: FactExtractionService,
        job_timeout_seconds: Optional[float] = None,
        shutdown_mode: Optional[str] = None,
    ):
        """Initialize the queue.

        Args:
            session_factory: Relational session factory
            document_processor: Extract/chunk/embed/upsert pipeline
            fact_extractor: Fact extraction step run after chunks are stored
            job_timeout_seconds: Per-job time limit; 0 or None disables it
            shutdown_mode: ``drain`` or ``abandon`` for ``shutdown()``
        """
        self.session_factory = session_factory
        self.document_processor = document_processor
        self.fact_extractor = fact_extractor

        if job_timeout_seconds is None:
            job_timeout_seconds = settings.ingestion.job_timeout_seconds
        self.job_timeout_seconds = job_timeout_seconds or None
        self.shutdown_mode = (shutdown_mode or settings.ingestion.shutdown_mode).lower()
        if self.shutdown_mode not in (DRAIN, ABANDON):
            raise ValueError(f"Unsupported shutdown mode: {self.shutdown_mode}")

        self._queue: asyncio.Queue[IngestionJob] = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def is_processing(self) -> bool:
        return self._worker is not None and not self._worker.done()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def enqueue(
        self,
        policy_id: UUID,
        buffer: Optional[bytes] = None,
        file_path: Optional[Union[str, Path]] = None,
        delete_file_after: bool = False,
    ) -> IngestionJob:
        """Append a job and return immediately.

        Must be called from within the running event loop. Starts the worker
        if none is active; otherwise the job simply waits its turn.
        """
        if self._closed:
            raise PipelineError("Ingestion queue is shut down")

        job = IngestionJob(
            policy_id=policy_id,
            buffer=buffer,
            file_path=Path(file_path) if file_path else None,
            delete_file_after=delete_file_after,
        )
        self._queue.put_nowait(job)
        LOGGER.info(
            "Queued policy for ingestion",
            extra={"policy_id": str(policy_id), "pending": self._queue.qsize()}
        )

        if not self.is_processing:
            self._worker = asyncio.get_running_loop().create_task(
                self._run(), name="policy-ingestion-worker"
            )
        return job

    async def join(self) -> None:
        """Wait until every queued job has been processed."""
        await self._queue.join()

    async def shutdown(self, drain: Optional[bool] = None) -> int:
        """Stop accepting jobs and either drain or abandon the queue.

        Returns:
            Number of queued jobs that were abandoned
        """
        self._closed = True
        if drain is None:
            drain = self.shutdown_mode == DRAIN

        if drain:
            await self.join()
            LOGGER.info("Ingestion queue drained and shut down")
            return 0

        abandoned = []
        while True:
            try:
                abandoned.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                break
            self._queue.task_done()

        if self.is_processing:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass

        for job in abandoned:
            await self._cleanup(job)

        LOGGER.warning(
            f"Ingestion queue shut down, abandoned {len(abandoned)} queued jobs",
            extra={"abandoned_policy_ids": [str(job.policy_id) for job in abandoned]}
        )
        return len(abandoned)

    async def _run(self) -> None:
        while True:
            try:
                job = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break

            try:
                await self._process_job(job)
            except Exception as e:
                LOGGER.error(
                    f"Ingestion worker error for policy {job.policy_id}: {e}",
                    exc_info=True,
                    extra={"policy_id": str(job.policy_id)}
                )
            finally:
                self._queue.task_done()

    async def _process_job(self, job: IngestionJob) -> None:
        policy_id = str(job.policy_id)
        LOGGER.info("Processing policy", extra={"policy_id": policy_id})

        try:
            if self.job_timeout_seconds:
                await asyncio.wait_for(self._run_stages(job), timeout=self.job_timeout_seconds)
            else:
                await self._run_stages(job)
            LOGGER.info("Policy processed successfully", extra={"policy_id": policy_id})
        except Exception as e:
            LOGGER.error(
                f"Failed processing policy {policy_id}: {e}",
                exc_info=True,
                extra={"policy_id": policy_id}
            )
            await self._mark_failed(job.policy_id)
        finally:
            await self._cleanup(job)

    async def _run_stages(self, job: IngestionJob) -> None:
        async with self.session_factory() as session:
            policies = PolicyRepository(session)

            policy = await policies.get_with_state(job.policy_id)
            if not policy:
                raise PolicyNotFoundError(f"Policy {job.policy_id} not found")

            context = PolicyContext(
                policy_id=policy.id,
                state_id=policy.state_id,
                state_name=policy.state.name,
                policy_title=policy.title,
            )
            await policies.set_status(policy.id, PolicyStatus.PROCESSING)
            await session.commit()

            document = await self._resolve_buffer(job)

            chunks = await self.document_processor.process(document, context)
            LOGGER.info(
                f"{len(chunks)} chunks indexed, writing chunk rows",
                extra={"policy_id": str(policy.id)}
            )
            await ChunkRepository(session).create_many(policy.id, chunks)
            await session.commit()

            await self.fact_extractor.extract_facts(policy.id)

            await policies.set_status(policy.id, PolicyStatus.COMPLETED)
            await session.commit()

    async def _resolve_buffer(self, job: IngestionJob) -> bytes:
        if job.buffer:
            return job.buffer
        if job.file_path:
            return await asyncio.to_thread(job.file_path.read_bytes)
        raise IngestionError("No buffer or file path provided for ingestion job")

    async def _mark_failed(self, policy_id: UUID) -> None:
        try:
            async with self.session_factory() as session:
                policy = await PolicyRepository(session).set_status(policy_id, PolicyStatus.FAILED)
                if policy is None:
                    LOGGER.warning(
                        "Cannot mark missing policy as failed",
                        extra={"policy_id": str(policy_id)}
                    )
                    return
                await session.commit()
        except (DatabaseError, SQLAlchemyError, OSError):
            LOGGER.error(
                "Failed to record failed status",
                exc_info=True,
                extra={"policy_id": str(policy_id)}
            )

    async def _cleanup(self, job: IngestionJob) -> None:
        if not (job.delete_file_after and job.file_path):
            return
        try:
            await asyncio.to_thread(job.file_path.unlink)
        except OSError as e:
            LOGGER.warning(
                f"Failed to delete temp file {job.file_path}: {e}",
                extra={"policy_id": str(job.policy_id)}
            )
