"""
Run/Score Controller

One EditorSession per loaded challenge (or one ungated free-play session).
The session owns the source, the attempt counters and the live diagnostic and drives:

    idle -> validating -> blocked_by_syntax
                       -> executing -> awaiting_runtime_diagnostic -> clean | flagged   (submit only)

Runs and submissions of a session are serialised; sandbox reports arrive
concurrently through the diagnostic channel.
"""

import asyncio
import itertools
import random
import string
import time
import uuid
from typing import Callable, Dict, List, Optional

import config
from analyzer import analyze
from data_service import DataService, DataServiceError
from debounce import Debouncer
from diagnostics import DiagnosticChannel, selection_range
from logger import playground_logger
from models import (
    AttemptCounters, Challenge, Diagnostic, EditorSessionView, RunResult, RunState,
    RunTrigger, Selection, SourceBundle, SubmissionRecord, SubmitResult, SubmitStatus,
)
from sandbox import RenderedDocument, SandboxError, build_document

MAX_SCORE = 100
MISTAKE_PENALTY = 5
EXTRA_RUN_PENALTY = 2
FREE_RUNS = 3

SESSION_ID_ALPHABET = string.digits + string.ascii_lowercase


def compute_score(mistakes: int, runs: int) -> int:
    """100, minus 5 per mistake, minus 2 per run beyond the third, floored at 0."""
    score = MAX_SCORE - MISTAKE_PENALTY * mistakes - EXTRA_RUN_PENALTY * max(0, runs - FREE_RUNS)
    return max(0, score)


def new_session_id() -> str:
    """Anonymous learner id used to key progress without authentication."""
    suffix = "".join(random.choices(SESSION_ID_ALPHABET, k=9))
    return f"session_{int(time.time() * 1000)}_{suffix}"


class EditorSession:
    """
    Editing session for one challenge load.

    `executor` is the session's sandbox: it provides `check_syntax(js)`,
    `render(document, sender_id, report)` and `discard()` (see sandbox.PlaywrightSandbox).
    """

    def __init__(
        self,
        editor_id: str,
        session_id: str,
        executor,
        data_service: DataService,
        challenge: Optional[Challenge] = None,
        debounce_seconds: float = config.DEBOUNCE_SECONDS,
        poll_timeout: float = config.SUBMIT_POLL_TIMEOUT_SECONDS,
        poll_interval: float = config.SUBMIT_POLL_INTERVAL_SECONDS
    ):
        self.editor_id = editor_id
        self.session_id = session_id
        self.executor = executor
        self.data_service = data_service
        self.challenge = challenge
        self.poll_timeout = poll_timeout
        self.poll_interval = poll_interval

        self.source = self._starter_source()
        self.counters = AttemptCounters()
        self.channel = DiagnosticChannel(on_runtime_fault=self._record_runtime_fault)
        self.debouncer = Debouncer(debounce_seconds, self._scheduled_run)
        self.state = RunState.IDLE
        self.document: Optional[RenderedDocument] = None
        self.submitted = False
        self.submitting = False
        self.score: Optional[int] = None

        self._run_bundle: Optional[SourceBundle] = None
        self._run_numbers = itertools.count(1)
        self._lock = asyncio.Lock()

    @property
    def diagnostic(self) -> Optional[Diagnostic]:
        return self.channel.current

    @property
    def busy(self) -> bool:
        return self.submitting or self._lock.locked()

    def _starter_source(self) -> SourceBundle:
        if self.challenge is not None:
            return self.challenge.starter_source()
        return SourceBundle.free_play()

    def _record_runtime_fault(self, diagnostic: Diagnostic):
        self.counters.mistake_count += 1
        if self.state == RunState.EXECUTING:
            self.state = RunState.FLAGGED

    # --- 1. Running ---

    async def run(self, trigger: RunTrigger = RunTrigger.MANUAL) -> RunResult:
        async with self._lock:
            return await self._run(trigger)

    async def _scheduled_run(self):
        await self.run(RunTrigger.SCHEDULED)

    async def _run(self, trigger: RunTrigger) -> RunResult:
        self.counters.run_count += 1
        run_id = f"{self.editor_id}:{next(self._run_numbers)}"
        # Anything the previous sandbox still sends is stale from here on
        self.channel.close()
        self.channel.clear()
        self.state = RunState.VALIDATING

        bundle = self.source.model_copy()
        self._run_bundle = bundle
        playground_logger.info(f"▶️ Run {run_id} ({trigger.value}), attempt #{self.counters.run_count}")

        try:
            problem = await analyze(bundle, self.executor.check_syntax)
        except SandboxError as e:
            return await self._sandbox_unavailable(e)

        if problem:
            # At most one mistake per blocked run, whichever check failed
            self.counters.mistake_count += 1
            self.channel.post(problem)
            self.state = RunState.BLOCKED_BY_SYNTAX
            self.document = None
            await self.executor.discard()
            playground_logger.info(f"🚫 Run {run_id} blocked: {problem.message}")
            return RunResult(immediate_error_found=True, diagnostic=problem)

        document = build_document(bundle)
        self.channel.open(run_id, document.script_line_offset, document.script_line_count)
        self.state = RunState.EXECUTING
        try:
            await self.executor.render(document, run_id, self.channel.deliver)
        except SandboxError as e:
            return await self._sandbox_unavailable(e)

        self.document = document
        return RunResult(immediate_error_found=False, diagnostic=self.channel.current)

    async def _sandbox_unavailable(self, error: SandboxError) -> RunResult:
        # Infrastructure failure: shown to the learner, not counted as their mistake
        self.channel.close()
        diagnostic = Diagnostic(message=str(error))
        self.channel.post(diagnostic)
        self.state = RunState.FLAGGED
        self.document = None
        await self.executor.discard()
        return RunResult(immediate_error_found=True, diagnostic=diagnostic)

    # --- 2. Submitting ---

    async def submit(self) -> SubmitResult:
        """
        Validates, runs, waits briefly for a runtime fault and, when the run is
        clean, persists exactly one SubmissionRecord for this challenge load.
        """
        if self.challenge is None:
            return SubmitResult(status=SubmitStatus.NO_CHALLENGE)
        if self.submitted:
            return SubmitResult(status=SubmitStatus.ALREADY_SUBMITTED, score=self.score)
        if self.submitting:
            return SubmitResult(status=SubmitStatus.IN_PROGRESS)

        self.submitting = True
        try:
            async with self._lock:
                return await self._submit()
        finally:
            self.submitting = False

    async def _submit(self) -> SubmitResult:
        # A load or reset may have run while this call waited for the lock
        challenge = self.challenge
        if challenge is None:
            return SubmitResult(status=SubmitStatus.NO_CHALLENGE)
        if self.submitted:
            return SubmitResult(status=SubmitStatus.ALREADY_SUBMITTED, score=self.score)

        result = await self._run(RunTrigger.SUBMIT)
        if result.immediate_error_found:
            self.state = RunState.FLAGGED
            return SubmitResult(status=SubmitStatus.FLAGGED, diagnostic=result.diagnostic)

        self.state = RunState.AWAITING_RUNTIME_DIAGNOSTIC
        diagnostic = await self._await_runtime_diagnostic()
        if diagnostic is not None:
            self.state = RunState.FLAGGED
            playground_logger.info(f"🚩 Submission flagged for {challenge.id}: {diagnostic.message}")
            return SubmitResult(status=SubmitStatus.FLAGGED, diagnostic=diagnostic)

        self.state = RunState.CLEAN
        score = compute_score(self.counters.mistake_count, self.counters.run_count)
        bundle = self._run_bundle
        record = SubmissionRecord(
            session_id=self.session_id,
            challenge_id=challenge.id,
            html=bundle.html,
            css=bundle.css,
            js=bundle.js,
            score=score,
            mistakes=self.counters.mistake_count,
            attempts=self.counters.run_count,
        )

        try:
            await self.data_service.insert_submission(record)
        except DataServiceError as e:
            playground_logger.error(f"❌ Error submitting challenge {challenge.id}: {e}")
            return SubmitResult(status=SubmitStatus.PERSISTENCE_FAILED, score=score)

        self.submitted = True
        self.score = score
        playground_logger.info(
            f"🎉 Challenge {challenge.id} submitted by {self.session_id}: "
            f"score={score}, mistakes={record.mistakes}, attempts={record.attempts}"
        )
        return SubmitResult(status=SubmitStatus.ACCEPTED, score=score, record=record)

    async def _await_runtime_diagnostic(self) -> Optional[Diagnostic]:
        """Polls the live diagnostic until one shows up or the window closes."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.poll_timeout
        while True:
            if self.channel.current is not None:
                return self.channel.current
            remaining = deadline - loop.time()
            if remaining <= 0:
                return None
            await asyncio.sleep(min(self.poll_interval, remaining))

    # --- 3. Editing & Resets ---

    def edit(self, html: Optional[str] = None, css: Optional[str] = None, js: Optional[str] = None) -> bool:
        """
        Applies an edit and (re)schedules the automatic run.

        Returns: True when the source changed and a run is pending
        """
        changes = {
            field: value
            for field, value in (("html", html), ("css", css), ("js", js))
            if value is not None and value != getattr(self.source, field)
        }
        if not changes:
            return False
        self.source = self.source.model_copy(update=changes)
        self.debouncer.trigger()
        return True

    # Resets wait for a run or submission in flight; its record belongs to the load it started in

    async def reset_code(self):
        """Back to the starter source; counters are kept."""
        async with self._lock:
            starter = self._starter_source()
            changed = starter != self.source
            self.source = starter
            await self._clear_output()
        if changed:
            self.debouncer.trigger()

    async def reset_session(self):
        """Fresh counters for the same challenge load."""
        self.debouncer.cancel()
        async with self._lock:
            self.counters = AttemptCounters()
            await self._clear_output()

    async def load_challenge(self, challenge: Optional[Challenge]):
        """New challenge load: starter source, counters, score and submission lock all reset."""
        self.debouncer.cancel()
        async with self._lock:
            self.challenge = challenge
            self.source = self._starter_source()
            self.counters = AttemptCounters()
            self.submitted = False
            self.score = None
            await self._clear_output()
        playground_logger.info(
            f"📘 Editor {self.editor_id} loaded {challenge.id if challenge else 'free play'}"
        )

    async def _clear_output(self):
        self.channel.close()
        self.channel.clear()
        self.state = RunState.IDLE
        self.document = None
        self._run_bundle = None
        await self.executor.discard()

    async def close(self):
        self.debouncer.cancel()
        async with self._lock:
            await self._clear_output()

    # --- 4. Views ---

    def preview(self) -> Optional[str]:
        return self.document.html if self.document else None

    def snapshot(self) -> EditorSessionView:
        diagnostic = self.channel.current
        selection = None
        if diagnostic is not None and diagnostic.line is not None:
            # Lines refer to the script as it was run, not as edited since
            script = self._run_bundle.js if self._run_bundle else self.source.js
            start, end = selection_range(script, diagnostic.line, diagnostic.column)
            selection = Selection(start=start, end=end)

        return EditorSessionView(
            editor_id=self.editor_id,
            session_id=self.session_id,
            challenge_id=self.challenge.id if self.challenge else None,
            state=self.state,
            source=self.source,
            counters=self.counters.model_copy(),
            diagnostic=diagnostic,
            selection=selection,
            submitted=self.submitted,
            submitting=self.submitting,
            score=self.score,
            auto_run_pending=self.debouncer.pending,
        )


class SessionRegistry:
    """
    Open editor sessions by editor id, each with its own sandbox.
    Sessions nobody has touched for `idle_timeout` seconds are closed by `expire_idle()`.
    """

    def __init__(
        self,
        executor_factory: Callable[[], object],
        data_service: DataService,
        idle_timeout: float = config.EDITOR_IDLE_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        **session_options
    ):
        self.executor_factory = executor_factory
        self.data_service = data_service
        self.idle_timeout = idle_timeout
        self.clock = clock
        self.session_options = session_options
        self.sessions: Dict[str, EditorSession] = {}
        self.last_active: Dict[str, float] = {}

    def open(self, session_id: str, challenge: Optional[Challenge] = None) -> EditorSession:
        editor_id = uuid.uuid4().hex
        session = EditorSession(
            editor_id, session_id, self.executor_factory(), self.data_service,
            challenge=challenge, **self.session_options
        )
        self.sessions[editor_id] = session
        self.last_active[editor_id] = self.clock()
        playground_logger.info(
            f"🆕 Editor {editor_id} opened for {session_id} ({challenge.id if challenge else 'free play'})"
        )
        return session

    def get(self, editor_id: str) -> Optional[EditorSession]:
        session = self.sessions.get(editor_id)
        if session is not None:
            self.last_active[editor_id] = self.clock()
        return session

    async def close(self, editor_id: str) -> bool:
        session = self.sessions.pop(editor_id, None)
        self.last_active.pop(editor_id, None)
        if session is None:
            return False
        await session.close()
        return True

    async def expire_idle(self) -> List[str]:
        """
        Closes sessions idle for longer than `idle_timeout`; a session with a
        run or submission in progress is kept.

        Returns: the editor ids that were closed
        """
        if not self.idle_timeout:
            return []

        now = self.clock()
        expired = [
            editor_id for editor_id, touched in self.last_active.items()
            if now - touched > self.idle_timeout and not self.sessions[editor_id].busy
        ]
        for editor_id in expired:
            playground_logger.info(f"⏳ Editor {editor_id} idle for over {self.idle_timeout:.0f}s, closing")
            await self.close(editor_id)
        return expired

    async def close_all(self):
        for editor_id in list(self.sessions):
            await self.close(editor_id)
