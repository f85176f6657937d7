"""
Job Orchestrator
================

Runs generation jobs against the external service and writes their results
back into an edit session.

- Image operations (generate, compose, mask edit, background removal) are a
  single request/response: pending -> sending -> succeeded | failed.
- Video is submitted, then polled at a fixed interval until it succeeds,
  fails, or runs out of attempts: pending -> submitting -> polling -> ...

Requests are checked before anything is sent; a request that fails these
checks raises ``StudioValidationError`` and never becomes a job.
Results are applied by synchronous code (no await between reading and
writing the layer collection), as targeted inserts or single-layer updates.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional

from ..canvas.compositor import SNAPSHOT_BACKGROUND, Compositor
from ..canvas.record_store import RecordStore
from ..canvas.session import EditSession
from ..errors import (
    JobNotFoundError, JobTimeoutError, MediaLoadError, StudioValidationError, TransientNetworkError,
)
from ..models.config_models import StudioConfig
from ..models.job_models import (
    OPERATION_CONFIG, ErrorCategory, GenerationJob, JobKind, JobStatus, OperationKind,
)
from ..models.layer_models import (
    VIDEO_ASPECT_RATIOS, VIDEO_DURATIONS, Layer, LayerKind, find_background,
)
from .generation_client import GenerationClient, GenerationResponse
from .media_loader import MediaLoader, image_to_base64, image_to_data_url
from .video_client import VideoClient, VideoOutcome, interpret_status

logger = logging.getLogger(__name__)

CONTENT_POLICY_MARKERS = (
    "此内容可能违反了我们的内容政策",
    "content policy",
)
CONTENT_POLICY_MESSAGE = (
    "Generation failed: the prompt may contain sensitive content. "
    "Please revise the prompt and try again."
)


def friendly_error(message: Optional[str]) -> str:
    """Rephrase content-policy rejections; pass everything else through."""
    if not message:
        return "Operation failed"
    lowered = message.lower()
    if any(marker.lower() in lowered for marker in CONTENT_POLICY_MARKERS):
        return CONTENT_POLICY_MESSAGE
    return message


class JobOrchestrator:
    """Owns every generation job and applies finished results to sessions."""

    def __init__(
        self,
        config: StudioConfig,
        generation_client: GenerationClient,
        video_client: VideoClient,
        compositor: Compositor,
        media_loader: MediaLoader,
        record_store: Optional[RecordStore] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config
        self.generation_client = generation_client
        self.video_client = video_client
        self.compositor = compositor
        self.media_loader = media_loader
        self.record_store = record_store
        self._sleep = sleep
        self.jobs: Dict[str, GenerationJob] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        logger.info("[JOB-ORCHESTRATOR] Initialized")

    # ------------------------------------------------------------------
    # Job registry
    # ------------------------------------------------------------------
    def get_job(self, job_id: str) -> GenerationJob:
        job = self.jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def list_jobs(self, session_id: Optional[str] = None) -> List[GenerationJob]:
        jobs = [j for j in self.jobs.values() if session_id is None or j.session_id == session_id]
        return sorted(jobs, key=lambda j: j.created_at, reverse=True)

    def _new_job(self, operation: OperationKind, session: EditSession, prompt: str) -> GenerationJob:
        job = GenerationJob.for_operation(operation, session.id, prompt)
        self.jobs[job.id] = job
        return job

    # ------------------------------------------------------------------
    # Request checks (nothing is mutated or sent before these pass)
    # ------------------------------------------------------------------
    def _require_api_key(self) -> None:
        if not self.config.api_key:
            raise StudioValidationError("Configure an API key first", field="api_key")

    @staticmethod
    def _require_prompt(prompt: str) -> str:
        prompt = (prompt or "").strip()
        if not prompt:
            raise StudioValidationError("Enter a prompt first", field="prompt")
        return prompt

    # ------------------------------------------------------------------
    # Failure / success bookkeeping
    # ------------------------------------------------------------------
    def _fail(self, job: GenerationJob, message: Optional[str], category: ErrorCategory) -> GenerationJob:
        job.fail(friendly_error(message), category)
        log = logger.warning if category == ErrorCategory.VALIDATION else logger.error
        log(f"[JOB-ORCHESTRATOR] {job.operation.value} job {job.id} failed ({category.value}): {job.error}")
        return job

    def _apply_result(self, session: EditSession, job: GenerationJob, url: str) -> GenerationJob:
        """Write a finished result into the session. Runs without suspension."""
        settings = OPERATION_CONFIG[job.operation]
        prefix = settings["layer_prefix"]

        if prefix is not None:
            kind = {
                OperationKind.GENERATE: LayerKind.BACKGROUND,
                OperationKind.VIDEO: LayerKind.VIDEO,
            }.get(job.operation, LayerKind.OVERLAY)
            layer = Layer.create(url, kind=kind, name=settings["layer_name"], prefix=prefix)
            session.insert_result_layer(layer)
            job.target_layer_id = layer.id
        else:
            if session.replace_layer_source(job.target_layer_id, url) is not None:
                if job.operation == OperationKind.MASK_EDIT:
                    session.mask.clear()

        job.succeed(url)

        if settings["records_history"] and self.record_store is not None:
            try:
                self.record_store.add(
                    url,
                    job.prompt or job.operation.value,
                    job.operation,
                    session.aspect_ratio,
                )
            except OSError as e:
                logger.error(f"[JOB-ORCHESTRATOR] Could not persist history record for {job.id}: {e}")

        logger.info(f"[JOB-ORCHESTRATOR] {job.operation.value} job {job.id} succeeded")
        return job

    def _finish_sync(
        self, session: EditSession, job: GenerationJob, response: GenerationResponse
    ) -> GenerationJob:
        if not response.success or not response.image_url:
            return self._fail(job, response.error, ErrorCategory.UPSTREAM)
        return self._apply_result(session, job, response.image_url)

    # ------------------------------------------------------------------
    # Image operations
    # ------------------------------------------------------------------
    async def generate(self, session: EditSession, prompt: str) -> GenerationJob:
        """Text-to-image. The result becomes a new background layer on top."""
        prompt = self._require_prompt(prompt)
        self._require_api_key()

        job = self._new_job(OperationKind.GENERATE, session, prompt)
        job.status = JobStatus.SENDING
        response = await self.generation_client.generate_image(prompt, session.aspect_ratio)
        return self._finish_sync(session, job, response)

    async def compose(self, session: EditSession, prompt: str = "") -> GenerationJob:
        """Blend the foreground layer into the background layer."""
        layers = session.layers
        background = find_background(layers)
        if background is None:
            raise StudioValidationError("No background layer found", field="layers")

        selected = session.selected_layer
        if selected is not None and selected.id != background.id:
            foreground = selected
        else:
            foreground = next((layer for layer in layers if layer.id != background.id), None)
        if foreground is None:
            raise StudioValidationError("Select or upload a foreground layer", field="layers")
        if background.is_video or foreground.is_video:
            raise StudioValidationError("Video layers cannot be composed", field="layers")
        self._require_api_key()

        job = self._new_job(OperationKind.COMPOSE, session, (prompt or "").strip())
        job.status = JobStatus.SENDING
        try:
            background_b64 = await self.media_loader.to_base64_png(background.url)
            foreground_b64 = await self.media_loader.to_base64_png(foreground.url)
        except MediaLoadError as e:
            return self._fail(job, e.message, ErrorCategory.VALIDATION)

        response = await self.generation_client.compose(background_b64, foreground_b64, job.prompt)
        return self._finish_sync(session, job, response)

    async def mask_edit(self, session: EditSession, prompt: str) -> GenerationJob:
        """Inpaint the painted region of the selected layer; its source is replaced."""
        prompt = self._require_prompt(prompt)
        layer = session.selected_layer
        if layer is None:
            raise StudioValidationError("Select a layer first", field="selected_layer_id")
        if layer.is_video:
            raise StudioValidationError("Mask editing is not supported for video layers", field="selected_layer_id")
        mask_b64 = session.mask.encode()
        if mask_b64 is None:
            raise StudioValidationError("Paint a mask first", field="mask")
        self._require_api_key()

        job = self._new_job(OperationKind.MASK_EDIT, session, prompt)
        job.target_layer_id = layer.id
        job.status = JobStatus.SENDING
        try:
            await self.media_loader.load_frame(layer)
        except MediaLoadError as e:
            return self._fail(job, e.message, ErrorCategory.VALIDATION)

        # The selected layer alone, placed exactly as in the full composite, on black
        width, height = session.mask.size
        designated = find_background(session.layers)
        visual = await self.compositor.render(
            [layer], width, height,
            background=SNAPSHOT_BACKGROUND,
            background_id=designated.id if designated else None,
        )
        response = await self.generation_client.inpaint(image_to_base64(visual), mask_b64, prompt)
        return self._finish_sync(session, job, response)

    async def remove_background(self, session: EditSession, layer_id: Optional[str] = None) -> GenerationJob:
        """Cut the subject out of a layer; its source is replaced. Not kept in history."""
        layer = session.store.get(layer_id) if layer_id else session.selected_layer
        if layer is None:
            raise StudioValidationError("Select a layer first", field="layer_id")
        if layer.is_video:
            raise StudioValidationError(
                "Background removal is not supported for video layers", field="layer_id"
            )
        self._require_api_key()

        job = self._new_job(OperationKind.REMOVE_BACKGROUND, session, "remove background")
        job.target_layer_id = layer.id
        job.status = JobStatus.SENDING
        try:
            image_b64 = await self.media_loader.to_base64_png(layer.url)
        except MediaLoadError as e:
            return self._fail(job, e.message, ErrorCategory.VALIDATION)

        response = await self.generation_client.remove_background(image_b64)
        return self._finish_sync(session, job, response)

    # ------------------------------------------------------------------
    # Video
    # ------------------------------------------------------------------
    def _check_video_request(self, session: EditSession, prompt: str) -> str:
        prompt = self._require_prompt(prompt)
        if session.aspect_ratio not in VIDEO_ASPECT_RATIOS:
            raise StudioValidationError(
                f"Video supports only {', '.join(VIDEO_ASPECT_RATIOS)}", field="aspect_ratio"
            )
        if session.video_duration not in VIDEO_DURATIONS:
            raise StudioValidationError(
                f"Unsupported video duration: {session.video_duration}", field="video_duration"
            )
        self._require_api_key()
        return prompt

    async def submit_video(self, session: EditSession, prompt: str) -> GenerationJob:
        """Submit a video task seeded with the current composite. Does not poll."""
        prompt = self._check_video_request(session, prompt)
        job = self._new_job(OperationKind.VIDEO, session, prompt)
        job.status = JobStatus.SUBMITTING

        images = []
        if session.layers:
            width, height = session.target_dimensions
            seed = await self.compositor.render(session.layers, width, height)
            images.append(image_to_data_url(seed))

        submitted = await self.video_client.submit(prompt, session.aspect_ratio, session.video_duration, images)
        if not submitted.success:
            return self._fail(job, submitted.error, ErrorCategory.UPSTREAM)

        job.task_id = submitted.task_id
        job.status = JobStatus.POLLING
        logger.info(f"[JOB-ORCHESTRATOR] Video job {job.id} polling task {job.task_id}")
        return job

    async def poll_once(self, session: EditSession, job: GenerationJob) -> GenerationJob:
        """Query the task once and advance the job. A no-op for sync or finished jobs."""
        if job.kind != JobKind.ASYNC or job.is_terminal or job.status != JobStatus.POLLING:
            return job

        job.attempts += 1
        try:
            status = await self.video_client.get_status(job.task_id)
        except TransientNetworkError as e:
            logger.debug(
                f"[JOB-ORCHESTRATOR] Poll {job.attempts} for {job.task_id} failed, retrying: {e.message}"
            )
        else:
            result = interpret_status(status.payload, self.video_client.base_url)
            logger.debug(f"[JOB-ORCHESTRATOR] Poll {job.attempts} for {job.task_id}: {result.raw_status}")
            if result.outcome == VideoOutcome.SUCCEEDED:
                return self._apply_result(session, job, result.video_url)
            if result.outcome == VideoOutcome.FAILED:
                return self._fail(job, result.error, ErrorCategory.UPSTREAM)

        if job.attempts >= self.config.max_poll_attempts:
            return self._fail(job, JobTimeoutError().message, ErrorCategory.TIMEOUT)
        return job

    async def run_video_job(self, session: EditSession, job: GenerationJob) -> GenerationJob:
        """Poll until the job reaches a terminal state."""
        while not job.is_terminal:
            await self._sleep(self.config.poll_interval_seconds)
            await self.poll_once(session, job)
        return job

    async def start_video(self, session: EditSession, prompt: str) -> GenerationJob:
        """Submit a video task and keep polling it in the background."""
        job = await self.submit_video(session, prompt)
        if not job.is_terminal:
            task = asyncio.create_task(self.run_video_job(session, job))
            self._tasks[job.id] = task
            task.add_done_callback(lambda _: self._tasks.pop(job.id, None))
        return job

    async def shutdown(self) -> None:
        """Cancel outstanding polling tasks."""
        for task in list(self._tasks.values()):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)
        self._tasks.clear()
