"""
Audio Job Queue.

Pre-synthesizes prompt audio for workflow nodes out of band so webhooks
can play rendered audio instead of synthesizing on the call path.

For each node in a job:
1. skip nodes that already have audio (unless forced)
2. extract the prompt text
3. synthesize, retrying with exponential backoff
4. on exhausted synthesis, mark the node degraded with a native voice
5. upload the audio and write url/asset id back to that single node
6. publish a progress event
"""

import asyncio
import time
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

import structlog
from pydantic import BaseModel

from ..config import AudioConfig, AudioJobStatus, SPEAKING_NODE_TYPES, TTSStatus
from ..errors import (
    AudioJobNotFound,
    AudioJobStateError,
    NodeNotFound,
    StalePrompt,
    SynthesisError,
    UploadError,
    WorkflowNotFound,
)
from ..events import (
    WORKFLOW_UPDATED,
    EventPublisher,
    audio_completed_event,
    audio_failed_event,
    audio_progress_event,
)
from ..models import AudioJob, AudioJobError, Node, Workflow
from ..storage import WorkflowRepository
from .storage import AssetStorage
from .synthesis import SynthesisAdapter
from .text import extract_prompt_text, needs_audio

logger = structlog.get_logger(__name__)


AUDIO_READY = "ready"
AUDIO_DEGRADED = "degraded"


class RetryStrategy(str, Enum):
    FIXED = "fixed"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


class RetryPolicy(BaseModel):
    """Bounded retry with a computed delay between attempts."""

    strategy: RetryStrategy = RetryStrategy.EXPONENTIAL
    max_attempts: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 60.0
    multiplier: float = 2.0

    def get_delay(self, attempt: int) -> float:
        """Delay after failed attempt number ``attempt`` (1-based)."""
        if self.strategy == RetryStrategy.FIXED:
            return self.base_delay_seconds
        elif self.strategy == RetryStrategy.LINEAR:
            return min(self.base_delay_seconds * attempt, self.max_delay_seconds)
        return min(
            self.base_delay_seconds * (self.multiplier ** (attempt - 1)),
            self.max_delay_seconds,
        )


_TTS_STATUS = {
    AudioJobStatus.COMPLETED: TTSStatus.COMPLETED,
    AudioJobStatus.PARTIAL: TTSStatus.PARTIAL,
    AudioJobStatus.FAILED: TTSStatus.FAILED,
}


class AudioJobQueue:
    """
    In-process job queue for prompt audio.

    Features:
    - Background processing with a per-job timeout and cancellation
    - Synthesis retry with exponential backoff, node-level retry for uploads
    - Degraded fallback to native platform voices
    - Single-node write-back guarded against concurrent prompt edits
    - Job status, stats, retry and cleanup
    """

    def __init__(
        self,
        repository: WorkflowRepository,
        synthesizer: SynthesisAdapter,
        storage: AssetStorage,
        config: Optional[AudioConfig] = None,
        publisher: Optional[EventPublisher] = None,
    ):
        self.repository = repository
        self.synthesizer = synthesizer
        self.storage = storage
        self.config = config or AudioConfig()
        self.publisher = publisher

        self.synthesis_retry = RetryPolicy(
            strategy=RetryStrategy.EXPONENTIAL,
            max_attempts=self.config.synthesis_max_attempts,
            base_delay_seconds=self.config.synthesis_backoff_base_s,
        )
        self.node_retry = RetryPolicy(
            strategy=RetryStrategy.LINEAR,
            max_attempts=self.config.node_max_attempts,
            base_delay_seconds=self.config.node_retry_delay_s,
        )

        self._jobs: Dict[str, AudioJob] = {}
        self._tasks: Dict[str, asyncio.Task] = {}

    # =========================================================================
    # Submission
    # =========================================================================

    def enqueue(self, workflow_id: str, nodes: List[Node], force_regenerate: bool = False) -> str:
        """
        Queue a job for ``nodes`` and start it in the background.

        Returns:
            Job id
        """
        job = AudioJob(workflow_id=workflow_id, nodes=list(nodes), force_regenerate=force_regenerate)
        self._jobs[job.id] = job
        self._start(job)

        logger.info(
            "audio_job_queued",
            job_id=job.id,
            workflow_id=workflow_id,
            nodes=job.total_nodes,
            force_regenerate=force_regenerate,
        )
        return job.id

    async def generate_now(self, workflow_id: str, force_regenerate: bool = False) -> AudioJob:
        """
        Run a job for every speaking node of the workflow and wait for it.

        Raises:
            WorkflowNotFound: if the workflow does not exist
        """
        workflow = await self.repository.get(workflow_id)
        if workflow is None:
            raise WorkflowNotFound(f"Workflow {workflow_id} not found")

        nodes = [n for n in workflow.nodes if n.type in SPEAKING_NODE_TYPES]
        job = AudioJob(workflow_id=workflow_id, nodes=nodes, force_regenerate=force_regenerate)
        self._jobs[job.id] = job

        await self._run(job)
        return job

    def _start(self, job: AudioJob) -> None:
        task = asyncio.create_task(self._run(job))
        self._tasks[job.id] = task
        task.add_done_callback(lambda t, job_id=job.id: self._tasks.pop(job_id, None))

    # =========================================================================
    # Processing
    # =========================================================================

    async def _run(self, job: AudioJob) -> None:
        log = logger.bind(job_id=job.id, workflow_id=job.workflow_id)
        try:
            await asyncio.wait_for(self._process(job, log), timeout=self.config.job_timeout_s)
        except asyncio.TimeoutError:
            job.error = f"Job timed out after {self.config.job_timeout_s}s"
            await self._finish(job, AudioJobStatus.FAILED, log)
        except asyncio.CancelledError:
            job.status = AudioJobStatus.CANCELLED
            job.completed_at = datetime.utcnow()
            log.info("audio_job_cancelled", processed=job.processed_nodes)
            raise
        except Exception as e:
            log.exception("audio_job_crashed", error=str(e))
            job.error = str(e)
            await self._finish(job, AudioJobStatus.FAILED, log)

    async def _process(self, job: AudioJob, log: Any) -> None:
        job.status = AudioJobStatus.PROCESSING
        job.started_at = datetime.utcnow()
        job.completed_at = None
        job.attempts += 1

        workflow = await self.repository.get(job.workflow_id)
        if workflow is None:
            job.error = f"Workflow {job.workflow_id} not found"
            await self._finish(job, AudioJobStatus.FAILED, log)
            return

        await self._set_tts_status(job.workflow_id, TTSStatus.PROCESSING, log)
        log.info("audio_job_started", nodes=job.total_nodes, attempt=job.attempts)

        for node in job.nodes:
            await self._process_node(job, workflow, node, log)
            await self._publish(
                audio_progress_event(job.workflow_id),
                {
                    "jobId": job.id,
                    "nodeId": node.id,
                    "progress": job.progress,
                    "processedNodes": job.processed_nodes,
                    "totalNodes": job.total_nodes,
                },
            )

        status = AudioJobStatus.PARTIAL if job.errors else AudioJobStatus.COMPLETED
        await self._finish(job, status, log)

    async def _process_node(self, job: AudioJob, workflow: Workflow, node: Node, log: Any) -> None:
        if not needs_audio(node, job.force_regenerate):
            job.processed_nodes += 1
            job.skipped_nodes += 1
            return

        text = extract_prompt_text(node)
        voice = self._synthesis_voice(node, workflow)
        language = node.data.get("language") or workflow.config.language or self.config.default_language

        for attempt in range(1, self.node_retry.max_attempts + 1):
            try:
                await self._generate_node_audio(job, node, text, voice, language, log)
                job.processed_nodes += 1
                return
            except (StalePrompt, NodeNotFound, WorkflowNotFound) as e:
                self._record_error(job, node.id, e.message, log)
                return
            except UploadError as e:
                if attempt >= self.node_retry.max_attempts:
                    self._record_error(job, node.id, e.message, log)
                    return
                delay = self.node_retry.get_delay(attempt)
                log.warning("audio_node_retrying", node_id=node.id, attempt=attempt, delay=delay, error=e.message)
                await asyncio.sleep(delay)

    async def _generate_node_audio(
        self,
        job: AudioJob,
        node: Node,
        text: str,
        voice: str,
        language: str,
        log: Any,
    ) -> None:
        try:
            audio = await self._synthesize_with_retry(text, voice, language, log)
        except SynthesisError as e:
            native_voice = self.native_voice_for(voice, language)
            await self._write_back(
                job,
                node.id,
                text,
                {"audio_url": None, "audio_asset_id": None, "audio_status": AUDIO_DEGRADED},
                {"audioUrl": None, "audioAssetId": None, "nativeVoice": native_voice},
            )
            job.degraded_nodes.append(node.id)
            log.warning("audio_node_degraded", node_id=node.id, native_voice=native_voice, error=e.message)
            return

        key = f"ivr_{job.workflow_id}_{node.id}_{int(time.time() * 1000)}"
        asset = await self.storage.upload(audio, key, self.config.storage_folder)

        try:
            previous = await self._write_back(
                job,
                node.id,
                text,
                {"audio_url": asset.url, "audio_asset_id": asset.asset_id, "audio_status": AUDIO_READY},
                {"audioUrl": asset.url, "audioAssetId": asset.asset_id, "nativeVoice": None},
            )
        except (StalePrompt, NodeNotFound, WorkflowNotFound):
            await self._delete_asset(asset.asset_id, log)
            raise

        if previous and previous != asset.asset_id:
            await self._delete_asset(previous, log)

        log.info("audio_node_ready", node_id=node.id, asset_id=asset.asset_id, size=len(audio))

    async def _synthesize_with_retry(self, text: str, voice: str, language: str, log: Any) -> bytes:
        policy = self.synthesis_retry
        for attempt in range(1, policy.max_attempts + 1):
            try:
                return await self.synthesizer.synthesize(text, voice, language)
            except SynthesisError as e:
                if attempt >= policy.max_attempts:
                    raise
                delay = policy.get_delay(attempt)
                log.warning("synthesis_retrying", attempt=attempt, delay=delay, error=e.message)
                await asyncio.sleep(delay)
        raise SynthesisError("Synthesis was not attempted")

    async def _write_back(
        self,
        job: AudioJob,
        node_id: str,
        text: str,
        fields: Dict[str, Any],
        data_fields: Dict[str, Any],
    ) -> Optional[str]:
        """
        Write audio fields to one node if its prompt is still ``text``.

        Returns:
            The asset id the node carried before the write
        """
        workflow = await self.repository.get(job.workflow_id)
        if workflow is None:
            raise WorkflowNotFound(f"Workflow {job.workflow_id} not found")

        current = workflow.get_node(node_id)
        if current is None:
            raise NodeNotFound(f"Node {node_id} was removed")
        if extract_prompt_text(current) != text:
            raise StalePrompt(f"Prompt of node {node_id} changed during generation")

        await self.repository.update_node_fields(job.workflow_id, node_id, fields, data_fields)
        return current.audio_asset_id

    async def _finish(self, job: AudioJob, status: AudioJobStatus, log: Any) -> None:
        job.status = status
        job.completed_at = datetime.utcnow()

        await self._set_tts_status(job.workflow_id, _TTS_STATUS[status], log)

        payload = job.to_dict()
        if status == AudioJobStatus.FAILED:
            log.error("audio_job_failed", error=job.error, errors=len(job.errors))
            await self._publish(audio_failed_event(job.workflow_id), payload)
        else:
            log.info(
                "audio_job_finished",
                status=status.value,
                processed=job.processed_nodes,
                skipped=job.skipped_nodes,
                degraded=len(job.degraded_nodes),
                errors=len(job.errors),
                duration_s=job.duration_s,
            )
            await self._publish(audio_completed_event(job.workflow_id), payload)

        await self._publish(
            WORKFLOW_UPDATED,
            {"workflowId": job.workflow_id, "ttsStatus": _TTS_STATUS[status].value, "jobId": job.id},
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _synthesis_voice(self, node: Node, workflow: Workflow) -> str:
        for voice in (node.data.get("voice"), workflow.config.voice):
            if voice and voice.lower().endswith("neural"):
                return voice
        return self.config.default_voice

    def native_voice_for(self, voice: Optional[str], language: Optional[str] = None) -> str:
        """Platform voice used when a node's audio could not be synthesized."""
        if voice and voice in self.config.voice_map:
            return self.config.voice_map[voice]
        if language and language.split("-")[0].lower() in ("hi", "ta"):
            return "Polly.Aditi"
        return self.config.fallback_voice

    def _record_error(self, job: AudioJob, node_id: str, error: str, log: Any) -> None:
        job.errors.append(AudioJobError(node_id=node_id, error=error))
        log.warning("audio_node_failed", node_id=node_id, error=error)

    async def _set_tts_status(self, workflow_id: str, status: TTSStatus, log: Any) -> None:
        try:
            await self.repository.update_fields(workflow_id, {"tts_status": status})
        except WorkflowNotFound:
            log.debug("tts_status_skipped", status=status.value)

    async def _delete_asset(self, asset_id: str, log: Any) -> None:
        try:
            await self.storage.delete(asset_id)
        except Exception as e:
            log.warning("asset_cleanup_failed", asset_id=asset_id, error=str(e))

    async def _publish(self, event: str, payload: Dict[str, Any]) -> None:
        if self.publisher is not None:
            await self.publisher.publish(event, payload)

    # =========================================================================
    # Management
    # =========================================================================

    def get_job(self, job_id: str) -> AudioJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise AudioJobNotFound(f"Audio job {job_id} not found")
        return job

    def get_job_status(self, job_id: str) -> Dict[str, Any]:
        """Status, progress %, remaining nodes and duration of a job."""
        return self.get_job(job_id).to_dict()

    def jobs_for_workflow(self, workflow_id: str) -> List[AudioJob]:
        return sorted(
            (j for j in self._jobs.values() if j.workflow_id == workflow_id),
            key=lambda j: j.created_at,
            reverse=True,
        )

    def stats(self) -> Dict[str, int]:
        counts = {status: 0 for status in AudioJobStatus}
        for job in self._jobs.values():
            counts[job.status] += 1

        return {
            "totalJobs": len(self._jobs),
            "pending": counts[AudioJobStatus.PENDING],
            "processing": counts[AudioJobStatus.PROCESSING],
            "completed": counts[AudioJobStatus.COMPLETED],
            "partial": counts[AudioJobStatus.PARTIAL],
            "failed": counts[AudioJobStatus.FAILED],
            "cancelled": counts[AudioJobStatus.CANCELLED],
            "activeJobs": len(self._tasks),
        }

    def retry_job(self, job_id: str) -> str:
        """
        Re-run a failed or partial job.

        A partial job re-runs only the nodes that failed.

        Raises:
            AudioJobNotFound, AudioJobStateError
        """
        job = self.get_job(job_id)
        if job.status not in (AudioJobStatus.FAILED, AudioJobStatus.PARTIAL):
            raise AudioJobStateError(f"Job {job_id} is {job.status.value}; only failed or partial jobs can be retried")

        if job.status == AudioJobStatus.PARTIAL:
            failed_ids = {e.node_id for e in job.errors}
            job.nodes = [n for n in job.nodes if n.id in failed_ids]

        job.status = AudioJobStatus.PENDING
        job.processed_nodes = 0
        job.skipped_nodes = 0
        job.degraded_nodes = []
        job.errors = []
        job.error = None
        self._start(job)

        logger.info("audio_job_retried", job_id=job_id, nodes=job.total_nodes)
        return job_id

    def cancel_job(self, job_id: str) -> AudioJob:
        """
        Cancel a pending or running job.

        Raises:
            AudioJobNotFound, AudioJobStateError
        """
        job = self.get_job(job_id)
        if job.is_finished:
            raise AudioJobStateError(f"Job {job_id} already {job.status.value}")

        task = self._tasks.get(job_id)
        if task is not None:
            task.cancel()
        job.status = AudioJobStatus.CANCELLED
        job.completed_at = datetime.utcnow()
        return job

    def cleanup_old_jobs(self) -> int:
        """Drop finished jobs older than the retention window."""
        cutoff = datetime.utcnow() - timedelta(seconds=self.config.max_job_age_s)
        expired = [
            job_id
            for job_id, job in self._jobs.items()
            if job.is_finished and (job.completed_at or job.created_at) < cutoff
        ]
        for job_id in expired:
            del self._jobs[job_id]

        if expired:
            logger.info("audio_jobs_cleaned", count=len(expired))
        return len(expired)

    async def drain(self) -> None:
        """Wait for all running jobs."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def close(self) -> None:
        for task in list(self._tasks.values()):
            task.cancel()
        await self.drain()
        await self.synthesizer.close()
        await self.storage.close()


__all__ = ["AudioJobQueue", "RetryPolicy", "RetryStrategy", "AUDIO_READY", "AUDIO_DEGRADED"]
