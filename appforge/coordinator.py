"""Generation request coordinator: single-flight sends, merging and approvals."""

import asyncio
from typing import Optional

from appforge.config import Config
from appforge.conversation import Transcript
from appforge.llm import GenerationBackend
from appforge.notifications import NotificationSink
from appforge.persistence import ProjectStore
from appforge.plan_queue import PlanQueue, build_step_directive
from appforge.state import (
    GenerationRequest,
    GenerationResult,
    ImageAttachment,
    MachineState,
    RuntimeErrorReport,
)
from appforge.tools.file_store import ApplyReport, FileStore
from appforge.utils.logging import SessionLogger


class GenerationCoordinator:
    """Turns user requests into a strictly sequential chain of generation calls.

    Owns the file store, the transcript and the plan queue of one editing
    session. Only one generation (manual or automatic) runs at a time; every
    request is built from the store at the moment it is sent.
    """

    def __init__(
        self,
        backend: GenerationBackend,
        config: Config,
        store: Optional[FileStore] = None,
        transcript: Optional[Transcript] = None,
        notifier: Optional[NotificationSink] = None,
        persistence: Optional[ProjectStore] = None,
        logger: Optional[SessionLogger] = None,
        user_id: Optional[str] = None,
        project_id: Optional[str] = None,
    ):
        """Initialize coordinator.

        Args:
            backend: Generative backend
            config: Configuration object
            store: File store (empty store with the configured policy if omitted)
            transcript: Chat transcript
            notifier: Toast sink
            persistence: Project store used after each successful generation
            logger: Optional session logger
            user_id: Owner of the persisted project
            project_id: Persisted project identity
        """
        self.backend = backend
        self.config = config
        self.logger = logger
        self.store = store or FileStore(policy=config.integrity_policy(), logger=logger)
        self.transcript = transcript or Transcript(logger)
        self.notifier = notifier or NotificationSink()
        self.persistence = persistence
        self.user_id = user_id
        self.project_id = project_id

        self.project_config = config.project
        self.plan_queue = PlanQueue(config.approval_tokens)
        self.input_buffer = ""
        self.staged_image: Optional[ImageAttachment] = None
        self.last_thought = ""
        self.last_report: Optional[ApplyReport] = None

        self._in_flight = False
        self._persist_tasks: set[asyncio.Task] = set()

    @property
    def is_generating(self) -> bool:
        return self._in_flight

    @property
    def state(self) -> MachineState:
        return self.plan_queue.state

    def stage_image(self, data: str, mime_type: str, preview: Optional[str] = None) -> None:
        self.staged_image = ImageAttachment(data=data, mime_type=mime_type, preview=preview)

    async def send(
        self,
        prompt_text: Optional[str] = None,
        is_automatic: bool = False,
        override_queue: Optional[list[str]] = None,
    ) -> bool:
        """Handle one request.

        While awaiting approval, a manual request is read as the yes/no
        answer: an affirmative reply runs the next queued step, anything
        else cancels the remaining steps without calling the backend.

        Args:
            prompt_text: Request text (the input buffer when None)
            is_automatic: Whether the request is an unattended step
            override_queue: Remaining steps to install before step bookkeeping

        Returns:
            False if the call was dropped, True otherwise
        """
        if self._in_flight:
            if is_automatic:
                self._log("automatic_dropped", prompt=prompt_text)
            return False

        if is_automatic and self.state is MachineState.AWAITING_APPROVAL:
            # Unattended steps only run through an approval
            self._log("automatic_dropped", prompt=prompt_text, reason="awaiting approval")
            return False

        text = (prompt_text if prompt_text is not None else self.input_buffer).strip()
        if not text:
            return False

        self._in_flight = True
        try:
            if not is_automatic and self.state is MachineState.AWAITING_APPROVAL:
                self.transcript.add_user(text)
                self.input_buffer = ""
                if self.plan_queue.is_affirmative(text):
                    await self._advance()
                else:
                    self._decline(explicit=self.plan_queue.is_negative(text))
            else:
                await self._generate(text, is_automatic, override_queue)
        finally:
            self._in_flight = False

        return True

    async def report_runtime_error(self, payload: dict) -> bool:
        """Request a fix for an error forwarded by the synthesized document.

        Args:
            payload: Bridge message ``{"type": "RUNTIME_ERROR", "error": {...}}``

        Returns:
            Whether the repair request was accepted
        """
        report = RuntimeErrorReport.from_bridge_message(payload)
        self.notifier.add_toast(f"Self-healing: {report.message}", "healing")
        if self.state is MachineState.AWAITING_APPROVAL and not self._in_flight:
            # A repair is not an answer to the pending approval
            self._decline()
        return await self.send(report.repair_prompt())

    async def rollback(self, files: dict[str, str], label: str) -> None:
        """Restore a previous set of files."""
        self.store.replace_all(files)
        self.notifier.add_toast(f"Rolled back to: {label}", "success")
        self._schedule_persistence(f"Rollback: {label}")

    async def wait_for_persistence(self) -> None:
        """Wait until scheduled persistence tasks have finished."""
        if self._persist_tasks:
            await asyncio.gather(*list(self._persist_tasks), return_exceptions=True)

    async def _advance(self) -> None:
        step = self.plan_queue.advance()
        self.notifier.add_toast(
            f"Working on Phase {step.phase}/{step.total}: {step.task[:30]}...", "info"
        )

        if self.config.advance_delay > 0:
            await asyncio.sleep(self.config.advance_delay)

        mission = self.plan_queue.mission or self.transcript.mission()
        await self._generate(build_step_directive(mission, step), True, None)

    def _decline(self, explicit: bool = False) -> None:
        cancelled = self.plan_queue.abort()
        self._log("mission_declined", cancelled=cancelled, explicit=explicit)
        self.transcript.add_assistant(
            f"Understood. Mission halted: {cancelled} remaining step(s) cancelled."
        )

    async def _generate(
        self, text: str, is_automatic: bool, override_queue: Optional[list[str]]
    ) -> None:
        history = self.transcript.recent_history(self.config.history_limit)
        image = None

        if is_automatic:
            self.transcript.add_internal(text)
        else:
            image = self.staged_image
            self.transcript.add_user(text, image=image.preview if image else None)
            self.input_buffer = ""
            self.staged_image = None

        # Built from the store as it is right now, after the previous step applied
        request = GenerationRequest(
            prompt_text=text,
            current_files=self.store.snapshot(),
            recent_history=history,
            image=image,
            config=self.project_config,
        )

        try:
            result = await self.backend.generate(request)
            self._complete(text, result, is_automatic, override_queue)
        except Exception as e:
            # A failed step must not leave the queue armed
            self._fail(e)

    def _complete(
        self,
        text: str,
        result: GenerationResult,
        is_automatic: bool,
        override_queue: Optional[list[str]],
    ) -> None:
        report = self.store.apply(result.files, result.diffs, automatic=is_automatic)
        self.last_report = report

        if report.batch_rejected:
            self.notifier.add_toast(
                "Update skipped: the response looked truncated and every file was kept.",
                "warning",
            )
        if report.miss_count:
            self.notifier.add_toast(
                f"{report.miss_count} patch block(s) did not match and were skipped.", "warning"
            )

        if result.thought:
            self.last_thought = result.thought

        if result.plan and not is_automatic:
            self.plan_queue.start(result.plan, mission=text)
            if self.plan_queue.pending_count:
                self.notifier.add_toast(
                    f"Engineering strategy locked: {len(result.plan)} steps to completion.",
                    "success",
                )
                if self.logger:
                    self.logger.save_plan(self.plan_queue.plan, text)

        if override_queue is not None and self.plan_queue.plan:
            self.plan_queue.replace_queue(override_queue)

        current_plan = list(self.plan_queue.plan)
        next_step = self.plan_queue.step_completed()

        prefix = "[DONE] " if is_automatic else ""
        self.transcript.add_assistant(
            prefix + result.answer,
            plan=result.plan or (current_plan if is_automatic else None),
            diffs=result.diffs,
            questions=result.questions,
            has_pending_steps=next_step is not None,
        )
        if result.summary:
            self._log("summary", summary=result.summary)

        if next_step is not None:
            done = len(current_plan) - self.plan_queue.pending_count
            self.transcript.add_approval(
                f"Phase {done}/{len(current_plan)} complete. Next: {next_step}\n"
                "Shall I proceed? Reply yes to continue or no to stop."
            )

        self._schedule_persistence(result.summary or result.answer)

    def _fail(self, error: Exception) -> None:
        cancelled = self.plan_queue.abort()
        self._log("generation_failed", error=str(error), cancelled=cancelled)
        self.notifier.add_toast(str(error) or error.__class__.__name__, "error")

    def _schedule_persistence(self, label: str) -> None:
        if not (self.persistence and self.user_id and self.project_id):
            return

        task = asyncio.get_running_loop().create_task(
            self._persist(self.store.snapshot(), label[:80])
        )
        self._persist_tasks.add(task)
        task.add_done_callback(self._persist_tasks.discard)

    async def _persist(self, files: dict[str, str], label: str) -> None:
        try:
            await self.persistence.update_project(
                self.user_id, self.project_id, files, self.project_config
            )
            await self.persistence.create_snapshot(self.project_id, files, label)
        except Exception as e:
            # In-memory state stays authoritative
            self._log("persistence_failed", error=str(e))

    def _log(self, kind: str, **data) -> None:
        if self.logger:
            self.logger.log_event(kind, **data)
