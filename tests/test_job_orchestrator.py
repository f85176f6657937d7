"""
Job Orchestrator tests against a mocked generation service.
"""

import asyncio
import base64
import json

import httpx
import pytest

from studio.canvas.compositor import Compositor
from studio.canvas.session import EditSession
from studio.errors import StudioValidationError
from studio.models.job_models import ErrorCategory, GenerationJob, JobStatus, OperationKind
from studio.models.layer_models import EditMode, LayerKind
from studio.services.generation_client import GenerationClient
from studio.services.job_orchestrator import CONTENT_POLICY_MESSAGE, JobOrchestrator
from studio.services.media_loader import MediaLoader
from studio.services.video_client import VideoClient, VideoOutcome, interpret_status

from conftest import API_BASE, make_layer, png_bytes

RESULT_B64 = base64.b64encode(png_bytes((8, 8), (9, 9, 9, 255))).decode("ascii")
INLINE_RESULT = {"candidates": [{"content": {"parts": [{"inlineData": {"mimeType": "image/png", "data": RESULT_B64}}]}}]}


async def no_sleep(_seconds):
    return None


class FakeService:
    """Records requests and answers them from a route table."""

    def __init__(self, routes):
        self.routes = routes
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.path)
        for (method, prefix), responder in self.routes.items():
            if method == key[0] and key[1].startswith(prefix):
                return responder(request)
        return httpx.Response(404, json={"error": {"message": "no route"}})


def build_orchestrator(config, service, record_store=None):
    transport = httpx.MockTransport(service)
    loader = MediaLoader()
    return JobOrchestrator(
        config=config,
        generation_client=GenerationClient(base_url=API_BASE, api_key=config.api_key, transport=transport),
        video_client=VideoClient(base_url=API_BASE, api_key=config.api_key, transport=transport),
        compositor=Compositor(loader),
        media_loader=loader,
        record_store=record_store,
        sleep=no_sleep,
    )


def sequence(*responses):
    """Responder returning the given responses in order, repeating the last one."""
    remaining = list(responses)

    def responder(request):
        item = remaining.pop(0) if len(remaining) > 1 else remaining[0]
        if isinstance(item, httpx.Response):
            return item
        if callable(item):
            return item(request)
        return httpx.Response(200, json=item)
    return responder


class TestInterpretStatus:

    def test_in_progress_any_case(self):
        for status in ("IN_PROGRESS", "in_progress", "In_Progress", "queued"):
            assert interpret_status({"status": status}).outcome == VideoOutcome.IN_PROGRESS

    def test_success_any_case_with_result_field(self):
        result = interpret_status({"status": "success", "video_url": "https://cdn/v.mp4"})
        assert result.outcome == VideoOutcome.SUCCEEDED
        assert result.video_url == "https://cdn/v.mp4"

    def test_result_fields_tried_in_order(self):
        payload = {"status": "SUCCESS", "url": "https://cdn/late.mp4", "data": {"output": "https://cdn/first.mp4"}}
        assert interpret_status(payload).video_url == "https://cdn/first.mp4"

    def test_relative_locator_resolved_against_base(self):
        result = interpret_status({"status": "SUCCESSFUL", "output": "files/v.mp4"}, base_url="https://api.test/")
        assert result.video_url == "https://api.test/files/v.mp4"

    def test_success_without_locator_is_failure(self):
        assert interpret_status({"status": "SUCCESS"}).outcome == VideoOutcome.FAILED

    def test_nested_json_failure_message(self):
        result = interpret_status({"status": "failed", "fail_reason": '{"message": "prompt rejected"}'})
        assert result.outcome == VideoOutcome.FAILED
        assert result.error == "prompt rejected"

    def test_unparseable_json_failure_message_kept(self):
        result = interpret_status({"status": "FAILURE", "error": "{broken"})
        assert result.error == "{broken"

    def test_failure_default_message(self):
        assert interpret_status({"status": "FAILED"}).error == "Video generation failed"

    def test_unknown_status_keeps_waiting(self):
        assert interpret_status({"status": "WARMING_UP"}).outcome == VideoOutcome.IN_PROGRESS
        assert interpret_status({}).outcome == VideoOutcome.IN_PROGRESS


class TestVideoJobs:

    @pytest.fixture
    def video_session(self, session):
        session.set_mode(EditMode.VIDEO)
        return session

    @pytest.mark.asyncio
    async def test_polls_until_success_and_inserts_video_layer(self, config, record_store, video_session):
        def edit_during_poll(_request):
            # An unrelated edit while the job is outstanding must survive
            video_session.update_layer("bg", "opacity", 30)
            return httpx.Response(200, json={"status": "in_progress"})

        service = FakeService({
            ("POST", "/v2/videos/generations"): sequence({"id": "task-1"}),
            ("GET", "/v2/videos/generations/task-1"): sequence(
                httpx.Response(502, text="bad gateway"),
                edit_during_poll,
                {"status": "SUCCESS", "data": {"output": "/files/v.mp4"}},
            ),
        })

        orchestrator = build_orchestrator(config, service, record_store)
        job = await orchestrator.submit_video(video_session, "waves at dusk")
        assert job.status == JobStatus.POLLING
        assert job.task_id == "task-1"

        submit = service.requests[0]
        assert submit.headers["X-Sora-Version"] == "2.0"
        assert submit.headers["Authorization"] == "Bearer test-key"
        body = json.loads(submit.content)
        assert body["aspect_ratio"] == "16:9"
        assert body["duration"] == 10
        assert body["images"][0].startswith("data:image/png;base64,")

        await orchestrator.run_video_job(video_session, job)
        assert job.status == JobStatus.SUCCEEDED
        assert job.attempts == 3
        assert job.result_url == f"{API_BASE}/files/v.mp4"

        top = video_session.layers[0]
        assert top.kind == LayerKind.VIDEO
        assert top.url == job.result_url
        assert video_session.store.selected_id == top.id
        assert video_session.store.get("bg").opacity == 30
        assert record_store.records[0].type == OperationKind.VIDEO

    @pytest.mark.asyncio
    async def test_exhausted_attempts_time_out(self, config, record_store, video_session):
        service = FakeService({
            ("POST", "/v2/videos/generations"): sequence({"task_id": "task-2"}),
            ("GET", "/v2/videos/generations/"): sequence({"status": "PROCESSING"}),
        })
        orchestrator = build_orchestrator(config, service, record_store)
        before = video_session.layers

        job = await orchestrator.start_video(video_session, "slow clouds")
        for _ in range(1000):
            if job.is_terminal:
                break
            await asyncio.sleep(0)

        assert job.status == JobStatus.FAILED
        assert job.error_category == ErrorCategory.TIMEOUT
        assert "history" in job.error
        assert job.attempts == config.max_poll_attempts
        assert video_session.layers == before
        assert record_store.records == []
        await orchestrator.shutdown()

    @pytest.mark.asyncio
    async def test_upstream_failure_is_distinct_from_timeout(self, config, video_session):
        service = FakeService({
            ("POST", "/v2/videos/generations"): sequence({"id": "task-3"}),
            ("GET", "/v2/videos/generations/"): sequence(
                {"status": "FAILED", "fail_reason": '{"error": "quota exceeded"}'}
            ),
        })
        orchestrator = build_orchestrator(config, service)
        job = await orchestrator.submit_video(video_session, "fireworks")
        await orchestrator.run_video_job(video_session, job)
        assert job.error_category == ErrorCategory.UPSTREAM
        assert job.error == "quota exceeded"
        assert job.attempts == 1

    @pytest.mark.asyncio
    async def test_rejected_submission_fails_without_polling(self, config, video_session):
        service = FakeService({
            ("POST", "/v2/videos/generations"): sequence(httpx.Response(400, json={"message": "bad ratio"})),
        })
        orchestrator = build_orchestrator(config, service)
        job = await orchestrator.start_video(video_session, "fireworks")
        assert job.status == JobStatus.FAILED
        assert job.error == "bad ratio"
        assert len(service.requests) == 1

    @pytest.mark.asyncio
    async def test_video_requires_video_ratio(self, config, session):
        service = FakeService({})
        orchestrator = build_orchestrator(config, service)
        with pytest.raises(StudioValidationError):
            await orchestrator.submit_video(session, "anything")
        assert service.requests == []

    @pytest.mark.asyncio
    async def test_poll_once_is_noop_for_sync_jobs(self, config, session):
        service = FakeService({})
        orchestrator = build_orchestrator(config, service)
        job = GenerationJob.for_operation(OperationKind.GENERATE, session.id, "x")
        assert await orchestrator.poll_once(session, job) is job
        assert job.attempts == 0
        assert service.requests == []


class TestImageJobs:

    @pytest.mark.asyncio
    async def test_generate_inserts_background_on_top(self, config, record_store, session):
        service = FakeService({
            ("POST", "/v1/images/generations"): sequence({"data": [{"url": "https://cdn/gen.png"}]}),
        })
        orchestrator = build_orchestrator(config, service, record_store)
        job = await orchestrator.generate(session, "a misty forest")

        assert job.status == JobStatus.SUCCEEDED
        body = json.loads(service.requests[0].content)
        assert body == {
            "model": "nano-banana",
            "prompt": "a misty forest",
            "aspect_ratio": "1:1",
            "response_format": "url",
        }
        top = session.layers[0]
        assert top.kind == LayerKind.BACKGROUND
        assert top.url == "https://cdn/gen.png"
        assert session.store.selected_id == top.id
        assert record_store.records[0].prompt == "a misty forest"

        session.undo()
        assert [layer.id for layer in session.layers] == ["fg", "bg"]

    @pytest.mark.asyncio
    async def test_content_policy_error_is_rephrased(self, config, record_store, session):
        service = FakeService({
            ("POST", "/v1/images/generations"): sequence(
                httpx.Response(400, json={"error": {"message": "此内容可能违反了我们的内容政策"}})
            ),
        })
        orchestrator = build_orchestrator(config, service, record_store)
        before = session.layers
        job = await orchestrator.generate(session, "something")

        assert job.status == JobStatus.FAILED
        assert job.error == CONTENT_POLICY_MESSAGE
        assert job.error_category == ErrorCategory.UPSTREAM
        assert session.layers == before
        assert not session.history.can_undo
        assert record_store.records == []

    @pytest.mark.asyncio
    async def test_checks_happen_before_network(self, config, session):
        service = FakeService({})
        orchestrator = build_orchestrator(config, service)
        with pytest.raises(StudioValidationError):
            await orchestrator.generate(session, "   ")
        config.api_key = ""
        with pytest.raises(StudioValidationError):
            await orchestrator.generate(session, "a cat")
        assert service.requests == []
        assert orchestrator.jobs == {}

    @pytest.mark.asyncio
    async def test_mask_edit_replaces_selected_layer(self, config, record_store, session):
        service = FakeService({("POST", "/v1beta/models/"): sequence(INLINE_RESULT)})
        orchestrator = build_orchestrator(config, service, record_store)
        session.set_mode(EditMode.MASK)
        session.begin_stroke((400, 400))
        session.extend_stroke((600, 600))

        job = await orchestrator.mask_edit(session, "add a hat")

        assert job.status == JobStatus.SUCCEEDED
        assert session.store.get("fg").url == f"data:image/png;base64,{RESULT_B64}"
        assert session.mask.encode() is None
        parts = json.loads(service.requests[0].content)["contents"][0]["parts"]
        assert parts[0]["text"].startswith("INPAINTING TASK.")
        assert len(parts) == 3
        assert record_store.records[0].type == OperationKind.MASK_EDIT

    @pytest.mark.asyncio
    async def test_mask_edit_needs_paint(self, config, session):
        service = FakeService({})
        orchestrator = build_orchestrator(config, service)
        session.set_mode(EditMode.MASK)
        with pytest.raises(StudioValidationError, match="mask"):
            await orchestrator.mask_edit(session, "add a hat")
        assert service.requests == []

    @pytest.mark.asyncio
    async def test_result_for_deleted_layer_is_not_applied(self, config, record_store, session):
        def delete_then_answer(_request):
            session.remove_layer("fg")
            return httpx.Response(200, json=INLINE_RESULT)

        service = FakeService({("POST", "/v1beta/models/"): delete_then_answer})
        orchestrator = build_orchestrator(config, service, record_store)
        job = await orchestrator.remove_background(session, "fg")

        assert job.status == JobStatus.SUCCEEDED
        assert [layer.id for layer in session.layers] == ["bg"]
        assert session.history.undo_depth == 1
        # Background removal never produces a History Record
        assert record_store.records == []

    @pytest.mark.asyncio
    async def test_remove_background_rejects_video(self, config, session):
        session.add_layer(make_layer("clip", LayerKind.VIDEO, url="https://cdn/clip.mp4"))
        service = FakeService({})
        orchestrator = build_orchestrator(config, service)
        with pytest.raises(StudioValidationError):
            await orchestrator.remove_background(session)
        assert service.requests == []

    @pytest.mark.asyncio
    async def test_compose_adds_overlay(self, config, record_store, session):
        service = FakeService({("POST", "/v1beta/models/"): sequence(INLINE_RESULT)})
        orchestrator = build_orchestrator(config, service, record_store)
        job = await orchestrator.compose(session)

        assert job.status == JobStatus.SUCCEEDED
        top = session.layers[0]
        assert top.id.startswith("composite-")
        assert top.kind == LayerKind.OVERLAY
        assert len(session.layers) == 3
        text = json.loads(service.requests[0].content)["contents"][0]["parts"][0]["text"]
        assert "Place the object naturally" in text

    @pytest.mark.asyncio
    async def test_compose_needs_foreground(self, config):
        service = FakeService({})
        orchestrator = build_orchestrator(config, service)
        lonely = EditSession(layers=[make_layer("bg", LayerKind.BACKGROUND)])
        with pytest.raises(StudioValidationError):
            await orchestrator.compose(lonely, "merge")

    @pytest.mark.asyncio
    async def test_unreadable_source_fails_job_as_validation(self, config, session):
        session.add_layer(make_layer("bad", url="data:image/png;base64,AAAA"))
        service = FakeService({})
        orchestrator = build_orchestrator(config, service)
        job = await orchestrator.remove_background(session, "bad")
        assert job.status == JobStatus.FAILED
        assert job.error_category == ErrorCategory.VALIDATION
        assert service.requests == []
