"""Run observer — follows one run over the event stream and by polling.

Two channels feed the same ``PipelineRun``:

- the stream channel reads the ``watch`` event stream and dispatches frames;
- the poll channel asks ``watch`` for a JSON snapshot every ``poll_interval``
  seconds, rescheduling itself after each request so polls never overlap.

Either channel may report a transition first, or both may report it. Every
consequence of a transition (fetching step output, reconciling files) is
idempotent, so duplicates are harmless. A third loop re-runs reconciliation
periodically once the workflow has completed and nothing was extracted yet.

The session ends when both channels are done, when a terminal run status is
seen (with ``stop_on_completion``), when polling keeps failing because the
runtime went away, or when the caller stops it.
"""

from __future__ import annotations
import asyncio
import inspect
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

import httpx

from hackhelper.client.frames import DoneFrame, Frame, FrameParser, MessageIdFrame, StatusFrame, StepFrame
from hackhelper.client.reconciler import SCAFFOLD_STEP_PATTERN, ArtifactReconciler
from hackhelper.client.runtime import RuntimeClient
from hackhelper.client.throttle import RequestThrottle
from hackhelper.core.config import HackHelperSettings
from hackhelper.core.errors import ChannelError, ConnectionClosed, is_connection_gone
from hackhelper.models.run import Artifact, MonitorSession, PipelineRun, RunStatus, StepStatus
from hackhelper.schemas.run import WatchSnapshot

logger = logging.getLogger("hackhelper.observer")

ProgressCallback = Callable[[str, list[Artifact]], Any]
StatusCallback = Callable[[WatchSnapshot], Any]

STEP_OUTPUT_KEYS = {
    "extractBrief": "extractedBrief",
    "parseBrief": "parsedBrief",
    "createPlan": "projectPlan",
    "scaffoldProject": "scaffoldResult",
}


@dataclass
class MonitorOptions:
    poll_interval: float = 1.5
    max_retries: int = 3
    stream_connect_timeout: float = 10.0
    file_check_interval: float = 5.0
    stop_on_completion: bool = True
    enable_stream: bool = True
    enable_poll: bool = True
    min_request_interval: float = 0.25
    output_dir: Path | None = None
    project_name: str | None = None

    @classmethod
    def from_settings(cls, settings: HackHelperSettings, **overrides: Any) -> "MonitorOptions":
        values = {
            "poll_interval": settings.poll_interval,
            "max_retries": settings.max_retries,
            "stream_connect_timeout": settings.stream_connect_timeout,
            "file_check_interval": settings.file_check_interval,
            "stop_on_completion": settings.stop_on_completion,
            "min_request_interval": settings.min_request_interval,
            "output_dir": Path(settings.output_dir),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


def render_step_output(step_id: str, output: Any) -> str:
    """Human-readable rendering of a step's output."""
    if output is None:
        return ""
    key = STEP_OUTPUT_KEYS.get(step_id)
    if key and isinstance(output, dict):
        value = output.get(key)
        if value is None:
            return ""
        return value if isinstance(value, str) else json.dumps(value, indent=2)
    if isinstance(output, str):
        return output
    return json.dumps(output, indent=2, default=str)


class MonitorHandle:
    """Returned by ``RunObserver.start``. Calling it (or ``stop()``) ends the session."""

    def __init__(self, observer: "RunObserver", task: asyncio.Task):
        self._observer = observer
        self._task = task

    def stop(self) -> None:
        self._observer.stop()

    __call__ = stop

    async def wait(self) -> PipelineRun:
        await asyncio.shield(self._task)
        return self._observer.run

    @property
    def done(self) -> bool:
        return self._task.done()

    @property
    def run(self) -> PipelineRun:
        return self._observer.run

    @property
    def session(self) -> MonitorSession:
        return self._observer.session

    @property
    def text(self) -> str:
        return self._observer.text

    @property
    def files(self) -> list[Artifact]:
        return list(self._observer.files)


class RunObserver:
    def __init__(
        self,
        runtime: RuntimeClient,
        run_id: str,
        reconciler: ArtifactReconciler,
        on_progress: ProgressCallback | None = None,
        on_status_update: StatusCallback | None = None,
        options: MonitorOptions | None = None,
    ):
        self.runtime = runtime
        self.reconciler = reconciler
        self.options = options or MonitorOptions()
        self.on_progress = on_progress
        self.on_status_update = on_status_update

        self.run = PipelineRun(run_id=run_id)
        self.session = MonitorSession()
        self.text = ""
        self.files: list[Artifact] = []
        self.throttle = RequestThrottle(self.options.min_request_interval)

        self._stopped = asyncio.Event()
        self._reconcile_lock = asyncio.Lock()
        self._rendered: set[str] = set()
        self._scaffold_reconciled: set[str] = set()
        self._stream_active = self.options.enable_stream
        self._poll_active = self.options.enable_poll
        self._stream_busy = False
        self._final_attempted = False

    @property
    def run_id(self) -> str:
        return self.run.run_id

    def start(self) -> MonitorHandle:
        task = asyncio.create_task(self._run(), name=f"monitor-{self.run_id}")
        return MonitorHandle(self, task)

    def stop(self, reason: str = "stopped by caller") -> None:
        if self.session.is_active:
            self.session.is_active = False
            self.session.stop_reason = reason
            logger.info(f"[{self.run_id}] Monitoring stopped: {reason}")
        self._stopped.set()

    # ─── Session ───

    async def _run(self) -> None:
        tasks: list[asyncio.Task] = []
        stream_task = None
        if self._stream_active:
            stream_task = asyncio.create_task(self._stream_loop())
            tasks.append(stream_task)
        if self._poll_active:
            tasks.append(asyncio.create_task(self._poll_loop()))
        if self.options.file_check_interval > 0:
            tasks.append(asyncio.create_task(self._file_check_loop()))
        if not (self._stream_active or self._poll_active):
            self.stop("no channels enabled")

        await self._stopped.wait()

        # A stream blocked on a read would never wake up; one handling a frame finishes it first
        if stream_task is not None and not stream_task.done() and not self._stream_busy:
            stream_task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        if not self._final_attempted:
            self._final_attempted = True
            await self._reconcile("final")

    def _channel_finished(self, channel: str) -> None:
        if channel == "stream":
            self._stream_active = False
        else:
            self._poll_active = False
        logger.debug(f"[{self.run_id}] {channel} channel finished")
        if not self._stream_active and not self._poll_active:
            self.stop("stream and poll channels finished")

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stopped.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    # ─── Stream channel ───

    async def _stream_loop(self) -> None:
        try:
            try:
                resp = await asyncio.wait_for(
                    self.runtime.open_watch_stream(self.run_id),
                    timeout=self.options.stream_connect_timeout,
                )
            except asyncio.TimeoutError:
                logger.warning(
                    f"[{self.run_id}] Stream did not connect within "
                    f"{self.options.stream_connect_timeout}s; continuing without it"
                )
                return
            except httpx.HTTPError as e:
                error = ChannelError("stream", str(e), connection_gone=is_connection_gone(e))
                logger.warning(f"[{self.run_id}] {error}; continuing without it")
                return

            try:
                await self._consume_stream(resp)
                logger.info(f"[{self.run_id}] Workflow watch completed")
            except ConnectionClosed as e:
                logger.info(f"[{self.run_id}] Stream closed by runtime ({e}); assuming run finished")
            finally:
                await resp.aclose()
        finally:
            self._channel_finished("stream")

    async def _consume_stream(self, resp: httpx.Response) -> None:
        parser = FrameParser()
        try:
            async for chunk in resp.aiter_bytes():
                if not self.session.is_active:
                    return
                self._stream_busy = True
                try:
                    if await self._dispatch(parser.feed(chunk)):
                        return
                finally:
                    self._stream_busy = False
        except httpx.HTTPError as e:
            raise ConnectionClosed(f"{type(e).__name__}: {e}") from e

        if self.session.is_active:
            await self._dispatch(parser.close())

    async def _dispatch(self, frames: list[Frame]) -> bool:
        """Handle frames in order. Returns True when the stream should stop."""
        for frame in frames:
            if not self.session.is_active:
                return True
            if isinstance(frame, DoneFrame):
                return True
            try:
                await self._handle_frame(frame)
            except Exception as e:
                logger.warning(f"[{self.run_id}] Error handling {frame!r}: {e}")
        return not self.session.is_active

    async def _handle_frame(self, frame: Frame) -> None:
        if isinstance(frame, MessageIdFrame):
            logger.debug(f"[{self.run_id}] message {frame.message_id}")
        elif isinstance(frame, StepFrame):
            status = StepStatus.parse(frame.status)
            if status is None:
                logger.debug(f"[{self.run_id}] Unknown step status {frame.status!r} for {frame.step_id}")
                return
            await self._on_step(frame.step_id, status)
        elif isinstance(frame, StatusFrame):
            status = RunStatus.parse(frame.status)
            if status is None:
                logger.debug(f"[{self.run_id}] Unknown run status {frame.status!r}")
                return
            await self._on_run_status(status)

    # ─── Poll channel ───

    async def _poll_loop(self) -> None:
        try:
            while self.session.is_active:
                await self._sleep(self.options.poll_interval)
                if not self.session.is_active:
                    break

                try:
                    snapshot = await self.runtime.poll(self.run_id)
                except (httpx.HTTPError, ValueError) as e:
                    if not self.session.is_active:
                        break
                    error = ChannelError(
                        "poll", f"{type(e).__name__}: {e}", connection_gone=is_connection_gone(e)
                    )
                    if self._poll_failed(error):
                        if error.connection_gone:
                            logger.info(f"[{self.run_id}] Runtime went away; treating it as the end of the run")
                            self._final_attempted = True
                            await self._reconcile("runtime went away")
                            self.stop("runtime went away")
                        break
                    continue

                if not self.session.is_active:
                    break
                self.session.consecutive_failure_count = 0
                await self._notify_status(snapshot)
                await self._apply_snapshot(snapshot)

                if self.run.status.is_terminal and not self.options.stop_on_completion:
                    break
        finally:
            self._channel_finished("poll")

    def _poll_failed(self, error: ChannelError) -> bool:
        """Count a failed poll. Returns True when polling should stop."""
        self.session.consecutive_failure_count += 1
        count = self.session.consecutive_failure_count
        logger.warning(f"[{self.run_id}] {error} ({count}/{self.options.max_retries})")
        if count < self.options.max_retries:
            return False
        if not error.connection_gone:
            logger.warning(f"[{self.run_id}] Polling stopped after {count} consecutive failures")
        return True

    async def _apply_snapshot(self, snapshot: WatchSnapshot) -> None:
        for step_id, path in snapshot.active_paths.items():
            if not self.session.is_active:
                return
            status = StepStatus.parse(path.status)
            if status is not None:
                await self._on_step(step_id, status)

        for step_id, result in snapshot.results.items():
            if not self.session.is_active:
                return
            if not isinstance(result, dict):
                continue
            status = StepStatus.parse(result.get("status"))
            if status is not None:
                await self._on_step(step_id, status, output=result.get("output"))

        status = RunStatus.parse(snapshot.status)
        if status is not None and self.session.is_active:
            await self._on_run_status(status)

    # ─── Transitions ───

    async def _on_step(self, step_id: str, status: StepStatus, output: Any = None) -> None:
        changed = self.run.apply_step(step_id, status, output=output)
        current = self.run.step_status(step_id)

        if current == StepStatus.SUCCESS and status == StepStatus.SUCCESS:
            await self._on_step_success(step_id)
            return
        if not changed:
            return

        if status == StepStatus.RUNNING:
            self._append(f"Running step: {step_id}...\n")
            await self._emit()
        elif status == StepStatus.FAILED:
            self._append(f"Error in step: {step_id}\n")
            await self._emit()

    async def _on_step_success(self, step_id: str) -> None:
        if step_id not in self._rendered:
            self._rendered.add(step_id)
            rendered = await self._step_output(step_id)
            if not self.session.is_active:
                return
            self._append(f"Completed step: {step_id}\n\n")
            if rendered:
                self._append(f"{rendered}\n\n")
            await self._emit()

        # First success per scaffold step only
        if (
            SCAFFOLD_STEP_PATTERN.search(step_id)
            and step_id not in self._scaffold_reconciled
            and self.session.is_active
        ):
            self._scaffold_reconciled.add(step_id)
            await self._reconcile(f"{step_id} succeeded")

    async def _step_output(self, step_id: str) -> str:
        state = self.run.active_steps.get(step_id)
        if state is not None and state.output is not None:
            return render_step_output(step_id, state.output)

        try:
            record = await self.runtime.get_run(self.run_id, throttle=self.throttle)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"[{self.run_id}] Could not fetch output for {step_id}: {e}")
            return ""

        step = record.steps.get(step_id)
        if step is None or step.output is None:
            return ""
        if state is not None and state.output is None:
            state.output = step.output
        return render_step_output(step_id, step.output)

    async def _on_run_status(self, status: RunStatus) -> None:
        if not self.run.apply_status(status):
            return

        if status == RunStatus.COMPLETED:
            self.session.workflow_complete = True
            self._append("\nProject initialization completed successfully!\n")
            await self._emit()
        elif status.is_terminal:
            self._append("\nProject initialization failed.\n")
            await self._emit()

        if status.is_terminal:
            await self._reconcile(f"run {status.value}")
            if self.options.stop_on_completion:
                self._final_attempted = True
                self.stop(f"run {status.value}")

    # ─── Files ───

    async def _file_check_loop(self) -> None:
        while self.session.is_active:
            await self._sleep(self.options.file_check_interval)
            if not self.session.is_active or self.session.files_extracted:
                break
            if self.session.workflow_complete:
                await self._reconcile("periodic file check")

    async def _reconcile(self, trigger: str) -> None:
        if self.options.output_dir is None:
            return
        async with self._reconcile_lock:
            if self.session.files_extracted:
                return
            logger.debug(f"[{self.run_id}] Reconciling files ({trigger})")
            result = await self.reconciler.reconcile(
                self.run_id,
                self.options.output_dir,
                project_name=self.options.project_name,
                throttle=self.throttle,
            )
            if result:
                self.session.files_extracted = True
                self.files = result.artifacts
                await self._emit()

    # ─── Callbacks ───

    def _append(self, text: str) -> None:
        self.text += text

    async def _emit(self) -> None:
        if self.on_progress is None:
            return
        try:
            outcome = self.on_progress(self.text, list(self.files))
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.warning(f"[{self.run_id}] Progress callback failed: {e}")

    async def _notify_status(self, snapshot: WatchSnapshot) -> None:
        if self.on_status_update is None:
            return
        try:
            outcome = self.on_status_update(snapshot)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.warning(f"[{self.run_id}] Status callback failed: {e}")
