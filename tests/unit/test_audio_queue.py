"""Unit tests for the audio job queue."""

import asyncio
from datetime import datetime, timedelta

import pytest

from ivrflow.audio import (
    AUDIO_DEGRADED,
    AUDIO_READY,
    AudioJobQueue,
    InMemoryAssetStorage,
    MockSynthesisAdapter,
    RetryPolicy,
    RetryStrategy,
)
from ivrflow.config import AudioJobStatus, TTSStatus
from ivrflow.errors import AudioJobNotFound, AudioJobStateError, WorkflowNotFound

GREETING_ONLY = [("greet", "greeting", {"messageText": "Welcome to Acme."})]


class EditingSynthesizer(MockSynthesisAdapter):
    """Changes the node's prompt while its audio is being synthesized."""

    def __init__(self, repository, workflow_id: str, node_id: str):
        super().__init__()
        self.repository = repository
        self.workflow_id = workflow_id
        self.node_id = node_id

    async def synthesize(self, text, voice=None, language=None):
        audio = await super().synthesize(text, voice, language)
        await self.repository.update_node_fields(self.workflow_id, self.node_id, {}, {"messageText": "Edited."})
        return audio


@pytest.fixture
def make_queue(workflow_repo, audio_config, publisher):
    queues = []

    def _make(synthesizer=None, storage=None, config=None):
        queue = AudioJobQueue(
            workflow_repo,
            synthesizer or MockSynthesisAdapter(),
            storage or InMemoryAssetStorage(),
            config or audio_config,
            publisher,
        )
        queues.append(queue)
        return queue

    yield _make
    for queue in queues:
        for task in list(queue._tasks.values()):
            task.cancel()


class TestGeneration:
    """Tests for running audio jobs."""

    @pytest.mark.asyncio
    async def test_generate_writes_audio_to_each_speaking_node(
        self, audio_queue, workflow_repo, synthesizer, w1_workflow
    ):
        job = await audio_queue.generate_now(w1_workflow.id)

        assert job.status == AudioJobStatus.COMPLETED
        assert job.total_nodes == 3
        assert job.processed_nodes == 3
        assert job.progress == 100

        workflow = await workflow_repo.get(w1_workflow.id)
        assert workflow.tts_status == TTSStatus.COMPLETED
        for node_id in ("greet", "I", "V"):
            node = workflow.get_node(node_id)
            assert node.audio_url.startswith("https://assets.local/ivr-audio/ivr_wf_test_")
            assert node.data["audioUrl"] == node.audio_url
            assert node.audio_status == AUDIO_READY
        assert workflow.get_node("T").audio_url is None

        assert [call[0] for call in synthesizer.calls] == [
            "Welcome to Acme.",
            "Press 1 for sales or 2 to leave a message.",
            "Please leave a message after the beep.",
        ]

    @pytest.mark.asyncio
    async def test_nodes_with_audio_are_skipped(self, audio_queue, synthesizer, make_workflow):
        await make_workflow(
            [("greet", "greeting", {"messageText": "Hi", "audioUrl": "https://cdn.example.com/hi.mp3"})], []
        )

        job = await audio_queue.generate_now("wf_test")

        assert job.status == AudioJobStatus.COMPLETED
        assert job.skipped_nodes == 1
        assert synthesizer.calls == []

    @pytest.mark.asyncio
    async def test_force_regenerate_replaces_previous_asset(
        self, audio_queue, workflow_repo, asset_storage, make_workflow
    ):
        await make_workflow(GREETING_ONLY, [])
        await audio_queue.generate_now("wf_test")
        first = (await workflow_repo.get("wf_test")).get_node("greet").audio_asset_id

        # asset keys carry a millisecond timestamp
        await asyncio.sleep(0.005)
        await audio_queue.generate_now("wf_test", force_regenerate=True)
        second = (await workflow_repo.get("wf_test")).get_node("greet").audio_asset_id

        assert second != first
        assert asset_storage.deleted == [first]

    @pytest.mark.asyncio
    async def test_synthesis_retried_until_success(self, make_queue, workflow_repo, make_workflow):
        synthesizer = MockSynthesisAdapter(fail_times=2)
        queue = make_queue(synthesizer=synthesizer)
        await make_workflow(GREETING_ONLY, [])

        job = await queue.generate_now("wf_test")

        assert job.status == AudioJobStatus.COMPLETED
        assert job.errors == []
        assert len(synthesizer.calls) == 3
        assert (await workflow_repo.get("wf_test")).get_node("greet").audio_status == AUDIO_READY

    @pytest.mark.asyncio
    async def test_exhausted_synthesis_degrades_node(self, make_queue, workflow_repo, make_workflow):
        queue = make_queue(synthesizer=MockSynthesisAdapter(fail_times=100))
        await make_workflow(GREETING_ONLY, [])

        job = await queue.generate_now("wf_test")

        assert job.status == AudioJobStatus.COMPLETED
        assert job.degraded_nodes == ["greet"]
        node = (await workflow_repo.get("wf_test")).get_node("greet")
        assert node.audio_url is None
        assert node.audio_status == AUDIO_DEGRADED
        assert node.data["nativeVoice"] == "Polly.Amy"

    @pytest.mark.asyncio
    async def test_upload_retried_at_node_level(self, make_queue, workflow_repo, make_workflow):
        storage = InMemoryAssetStorage(fail_times=2)
        queue = make_queue(storage=storage)
        await make_workflow(GREETING_ONLY, [])

        job = await queue.generate_now("wf_test")

        assert job.status == AudioJobStatus.COMPLETED
        assert storage.upload_calls == 3
        assert (await workflow_repo.get("wf_test")).get_node("greet").audio_url

    @pytest.mark.asyncio
    async def test_partial_job_retries_only_failed_nodes(self, make_queue, workflow_repo, make_workflow):
        storage = InMemoryAssetStorage(fail_times=3)
        queue = make_queue(storage=storage)
        await make_workflow(
            GREETING_ONLY + [("bye", "end", {"message": "Goodbye."})],
            [("greet", "bye")],
        )

        job = await queue.generate_now("wf_test")

        assert job.status == AudioJobStatus.PARTIAL
        assert [e.node_id for e in job.errors] == ["greet"]
        assert job.to_dict()["remainingNodes"] == 0
        assert (await workflow_repo.get("wf_test")).tts_status == TTSStatus.PARTIAL

        queue.retry_job(job.id)
        await queue.drain()

        assert job.status == AudioJobStatus.COMPLETED
        assert [n.id for n in job.nodes] == ["greet"]
        assert job.attempts == 2
        workflow = await workflow_repo.get("wf_test")
        assert workflow.get_node("greet").audio_url
        assert workflow.tts_status == TTSStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_prompt_edited_during_generation(self, make_queue, workflow_repo, make_workflow):
        storage = InMemoryAssetStorage()
        queue = make_queue(synthesizer=EditingSynthesizer(workflow_repo, "wf_test", "greet"), storage=storage)
        await make_workflow(GREETING_ONLY, [])

        job = await queue.generate_now("wf_test")

        assert job.status == AudioJobStatus.PARTIAL
        assert "changed" in job.errors[0].error
        node = (await workflow_repo.get("wf_test")).get_node("greet")
        assert node.data["messageText"] == "Edited."
        assert node.audio_url is None
        assert storage.assets == {}
        assert len(storage.deleted) == 1

    @pytest.mark.asyncio
    async def test_missing_workflow(self, audio_queue):
        with pytest.raises(WorkflowNotFound):
            await audio_queue.generate_now("wf_missing")

        job_id = audio_queue.enqueue("wf_missing", [])
        await audio_queue.drain()

        job = audio_queue.get_job(job_id)
        assert job.status == AudioJobStatus.FAILED
        assert "not found" in job.error

    @pytest.mark.asyncio
    async def test_slow_job_times_out(self, make_queue, audio_config, workflow_repo, make_workflow):
        queue = make_queue(
            synthesizer=MockSynthesisAdapter(latency_ms=500),
            config=audio_config.model_copy(update={"job_timeout_s": 0.05}),
        )
        await make_workflow(GREETING_ONLY, [])

        job = await queue.generate_now("wf_test")

        assert job.status == AudioJobStatus.FAILED
        assert job.error == "Job timed out after 0.05s"
        assert (await workflow_repo.get("wf_test")).get_node("greet").audio_url is None


class TestEvents:
    """Tests for progress and completion events."""

    @pytest.mark.asyncio
    async def test_events_published(self, audio_queue, publisher, w1_workflow):
        received = []

        async def handler(event, payload):
            received.append(event)

        publisher.subscribe("workflow.*.audio.*", handler)

        await audio_queue.generate_now(w1_workflow.id)

        assert received.count("workflow.wf_test.audio.progress") == 3
        assert received[-1] == "workflow.wf_test.audio.completed"
        updated = publisher.recent("workflow_updated")
        assert updated[-1].payload["ttsStatus"] == "completed"


class TestManagement:
    """Tests for job status, cancel, retry and cleanup."""

    @pytest.mark.asyncio
    async def test_enqueue_and_status(self, audio_queue, w1_workflow):
        job_id = audio_queue.enqueue(w1_workflow.id, w1_workflow.nodes[:1])
        await audio_queue.drain()

        status = audio_queue.get_job_status(job_id)
        assert status["status"] == "completed"
        assert status["processedNodes"] == 1
        assert status["remainingNodes"] == 0
        assert [j.id for j in audio_queue.jobs_for_workflow(w1_workflow.id)] == [job_id]

    @pytest.mark.asyncio
    async def test_unknown_job(self, audio_queue):
        with pytest.raises(AudioJobNotFound):
            audio_queue.get_job("tts_missing")

    @pytest.mark.asyncio
    async def test_cancel_running_job(self, make_queue, make_workflow):
        queue = make_queue(synthesizer=MockSynthesisAdapter(latency_ms=500))
        workflow = await make_workflow(GREETING_ONLY, [])

        job_id = queue.enqueue(workflow.id, workflow.nodes)
        await asyncio.sleep(0.05)
        job = queue.cancel_job(job_id)
        await queue.drain()

        assert job.status == AudioJobStatus.CANCELLED
        assert queue.stats()["cancelled"] == 1
        with pytest.raises(AudioJobStateError):
            queue.cancel_job(job_id)

    @pytest.mark.asyncio
    async def test_only_failed_or_partial_jobs_retry(self, audio_queue, w1_workflow):
        job = await audio_queue.generate_now(w1_workflow.id)

        with pytest.raises(AudioJobStateError):
            audio_queue.retry_job(job.id)

    @pytest.mark.asyncio
    async def test_stats(self, audio_queue, w1_workflow):
        await audio_queue.generate_now(w1_workflow.id)

        stats = audio_queue.stats()
        assert stats["totalJobs"] == 1
        assert stats["completed"] == 1
        assert stats["activeJobs"] == 0

    @pytest.mark.asyncio
    async def test_cleanup_old_jobs(self, audio_queue, w1_workflow):
        job = await audio_queue.generate_now(w1_workflow.id)
        job.completed_at = datetime.utcnow() - timedelta(days=2)

        assert audio_queue.cleanup_old_jobs() == 1
        with pytest.raises(AudioJobNotFound):
            audio_queue.get_job(job.id)


class TestRetryPolicy:
    """Tests for retry delays."""

    def test_exponential(self):
        policy = RetryPolicy(base_delay_seconds=1.0)

        assert [policy.get_delay(a) for a in (1, 2, 3)] == [1.0, 2.0, 4.0]

    def test_linear_is_capped(self):
        policy = RetryPolicy(strategy=RetryStrategy.LINEAR, base_delay_seconds=2.0, max_delay_seconds=5.0)

        assert [policy.get_delay(a) for a in (1, 2, 3)] == [2.0, 4.0, 5.0]
