from __future__ import annotations

import itertools
import logging
import multiprocessing
import queue
import threading
import time
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Protocol

from src.analysis.worker import SINGLE_SCORE_TYPES, run_analysis, worker_main
from src.config import DispatcherSettings
from src.models import AnalysisOptions, AnalysisTask, FrameAnalysisResult, PixelBuffer, TaskType, clamp_score

logger = logging.getLogger(__name__)


class DispatcherState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    BACKGROUND = "background"
    FALLBACK = "fallback"


class DispatcherDisposedError(RuntimeError):
    """Raised on tasks still pending when the dispatcher is disposed."""


class DispatcherNotReadyError(RuntimeError):
    """Raised when initialization never reaches a ready state."""


class TaskTimeoutError(RuntimeError):
    """Raised when the caller's own wait budget elapses."""


class BackgroundContext(Protocol):
    def send(self, message: dict[str, Any] | None) -> None: ...

    def receive(self, timeout: float) -> dict[str, Any] | None: ...

    def is_alive(self) -> bool: ...

    def terminate(self) -> None: ...


class ProcessContext:
    """Background analysis process connected by a request and a response queue."""

    def __init__(self, start_method: str = "spawn", log_level: str = "INFO") -> None:
        context = multiprocessing.get_context(start_method)
        self._requests = context.Queue()
        self._responses = context.Queue()
        self._process = context.Process(
            target=worker_main,
            args=(self._requests, self._responses, log_level),
            name="frame-analysis-worker",
            daemon=True,
        )
        self._process.start()

    def send(self, message: dict[str, Any] | None) -> None:
        self._requests.put(message)

    def receive(self, timeout: float) -> dict[str, Any] | None:
        try:
            return self._responses.get(timeout=timeout)
        except queue.Empty:
            return None

    def is_alive(self) -> bool:
        return self._process.is_alive()

    def terminate(self) -> None:
        if self._process.is_alive():
            try:
                self._requests.put(None)
            except (OSError, ValueError) as exc:
                logger.debug("Could not send stop sentinel to worker: %s", exc)
            self._process.join(timeout=1.0)
        if self._process.is_alive():
            self._process.terminate()
            self._process.join(timeout=1.0)
        self._requests.close()
        self._responses.close()


@dataclass(slots=True)
class PendingTask:
    task: AnalysisTask
    future: Future
    deadline: float


class ExecutionDispatcher:
    """Runs analysis tasks in one background process, degrading to local execution.

    The first submission initializes the dispatcher: it starts a background
    context and waits for a self-test acknowledgement. Any failure there, or a
    later context-level error, switches to fallback mode for the rest of the
    dispatcher's life; ``dispose`` is the only way back to an uninitialized
    state. Timed-out tasks are re-run locally instead of failing.
    """

    def __init__(
        self,
        settings: DispatcherSettings | None = None,
        context_factory: Callable[[], BackgroundContext] | None = None,
        clock: Callable[[], float] = time.monotonic,
        log_level: str = "INFO",
    ) -> None:
        self.settings = settings or DispatcherSettings()
        self._context_factory = context_factory or (
            lambda: ProcessContext(start_method=self.settings.start_method, log_level=log_level)
        )
        self._clock = clock
        self._lock = threading.RLock()
        self._pending: dict[str, PendingTask] = {}
        self._state = DispatcherState.UNINITIALIZED
        self._context: BackgroundContext | None = None
        self._reader: threading.Thread | None = None
        self._stop_reader = threading.Event()
        self._init_done = threading.Event()
        self._counter = itertools.count(1)
        self._generation = 0

    @property
    def state(self) -> DispatcherState:
        return self._state

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def create_task(
        self,
        task_type: TaskType,
        buffer: PixelBuffer | None,
        options: AnalysisOptions | None = None,
        timeout_seconds: float | None = None,
    ) -> AnalysisTask:
        return AnalysisTask(
            task_id=self._next_task_id(),
            type=task_type,
            buffer=buffer,
            options=options or AnalysisOptions(),
            timeout_seconds=timeout_seconds if timeout_seconds is not None else self.settings.task_timeout_seconds,
        )

    def initialize(self) -> DispatcherState:
        """Bring the dispatcher to a ready state, retrying a bounded number of times."""

        attempts = max(1, self.settings.max_init_attempts)
        with self._lock:
            generation = self._generation
        for attempt in range(1, attempts + 1):
            with self._lock:
                if self._generation != generation:
                    logger.debug("Dispatcher disposed during initialization; not restarting.")
                    return self._state
                state = self._state
                if state in (DispatcherState.BACKGROUND, DispatcherState.FALLBACK):
                    return state
                owner = state is DispatcherState.UNINITIALIZED
                if owner:
                    self._state = DispatcherState.INITIALIZING
                    self._init_done.clear()

            if owner:
                self._start_background(generation)
            else:
                logger.debug("Waiting for concurrent initialization (attempt %s/%s)", attempt, attempts)
                self._init_done.wait(self.settings.init_timeout_seconds * 2)

        with self._lock:
            if self._state in (DispatcherState.BACKGROUND, DispatcherState.FALLBACK):
                return self._state
        raise DispatcherNotReadyError(f"Dispatcher was not ready after {attempts} initialization attempts.")

    def submit(self, task: AnalysisTask) -> Future:
        """Queue a task and return a future resolving to a score or ``FrameAnalysisResult``."""

        if self.initialize() is DispatcherState.FALLBACK:
            return self._completed_locally(task)

        future: Future = Future()
        with self._lock:
            context = self._context
            if self._state is not DispatcherState.BACKGROUND or context is None:
                return self._completed_locally(task)
            self._pending[task.task_id] = PendingTask(
                task=task,
                future=future,
                deadline=self._clock() + task.timeout_seconds,
            )

        try:
            context.send(_message_for(task))
        except (OSError, ValueError, EOFError) as exc:
            self._handle_context_failure(f"failed to send task {task.task_id}: {exc}")
        return future

    def run(self, task: AnalysisTask, caller_timeout: float | None = None) -> Any:
        """Submit a task and wait for its outcome."""

        future = self.submit(task)
        try:
            return future.result(timeout=caller_timeout)
        except FutureTimeoutError as exc:
            with self._lock:
                self._pending.pop(task.task_id, None)
            raise TaskTimeoutError(
                f"Task {task.task_id} ({task.type.value}) exceeded the caller timeout of {caller_timeout}s."
            ) from exc

    def dispose(self) -> None:
        """Stop the background context and fail every pending task."""

        with self._lock:
            pending = list(self._pending.values())
            self._pending.clear()
            context = self._context
            self._context = None
            reader = self._reader
            self._reader = None
            self._stop_reader.set()
            self._state = DispatcherState.UNINITIALIZED
            self._generation += 1
            self._init_done.set()

        for entry in pending:
            _fail(entry.future, DispatcherDisposedError(f"Task {entry.task.task_id} cancelled: dispatcher disposed."))
        if context is not None:
            _terminate(context)
        if reader is not None and reader is not threading.current_thread():
            reader.join(timeout=1.0)
        if pending:
            logger.info("Dispatcher disposed with %d pending tasks.", len(pending))

    def _next_task_id(self) -> str:
        return f"task_{int(time.time() * 1000)}_{next(self._counter)}"

    def _start_background(self, generation: int) -> None:
        if not self.settings.use_background:
            self._enter_fallback("background execution disabled", generation)
            return

        try:
            context = self._context_factory()
        except Exception as exc:
            self._enter_fallback(f"could not start background context: {exc}", generation)
            return

        if not self._self_test(context):
            _terminate(context)
            self._enter_fallback(
                f"self-test not acknowledged within {self.settings.init_timeout_seconds:.1f}s",
                generation,
            )
            return

        stop = threading.Event()
        with self._lock:
            if self._state is not DispatcherState.INITIALIZING or self._generation != generation:
                # disposed while starting
                _terminate(context)
                return
            self._context = context
            self._stop_reader = stop
            self._state = DispatcherState.BACKGROUND
            self._reader = threading.Thread(
                target=self._read_responses,
                args=(context, stop),
                name="frame-analysis-reader",
                daemon=True,
            )
            self._reader.start()
            self._init_done.set()
        logger.info("Background analysis context ready.")

    def _self_test(self, context: BackgroundContext) -> bool:
        task_id = self._next_task_id()
        deadline = self._clock() + self.settings.init_timeout_seconds
        try:
            context.send({"type": TaskType.TEST.value, "taskId": task_id})
            while self._clock() < deadline:
                message = context.receive(min(self.settings.poll_interval_seconds, max(0.0, deadline - self._clock())))
                if message is None:
                    if not context.is_alive():
                        return False
                    continue
                if message.get("taskId") == task_id and message.get("result") == "ok":
                    return True
                logger.debug("Ignoring message during self-test: %s", message.get("type"))
        except (OSError, ValueError, EOFError) as exc:
            logger.warning("Background self-test failed: %s", exc)
        return False

    def _enter_fallback(self, reason: str, generation: int) -> None:
        with self._lock:
            if self._state is not DispatcherState.INITIALIZING or self._generation != generation:
                return
            self._state = DispatcherState.FALLBACK
            self._init_done.set()
        logger.warning("Dispatcher running in fallback mode: %s", reason)

    def _read_responses(self, context: BackgroundContext, stop: threading.Event) -> None:
        while not stop.is_set():
            try:
                message = context.receive(self.settings.poll_interval_seconds)
            except (OSError, ValueError, EOFError) as exc:
                if not stop.is_set():
                    self._handle_context_failure(f"response channel failed: {exc}")
                return

            if stop.is_set():
                return
            if message is None:
                if not context.is_alive():
                    self._handle_context_failure("background process exited")
                    return
            else:
                self._dispatch_response(message)
            self._expire_timeouts()

    def _dispatch_response(self, message: dict[str, Any]) -> None:
        task_id = message.get("taskId")
        if task_id is None:
            if message.get("error") is not None:
                self._handle_context_failure(f"background context error: {message['error']}")
            return

        with self._lock:
            entry = self._pending.pop(task_id, None)
        if entry is None:
            logger.debug("Ignoring response for unknown task %s", task_id)
            return

        try:
            outcome = self._interpret(entry.task, message)
        except Exception as exc:
            logger.exception("Could not interpret response for task %s", task_id)
            _fail(entry.future, exc)
            return
        if outcome is None:
            self._settle_locally(entry)
        else:
            _resolve(entry.future, outcome)

    def _interpret(self, task: AnalysisTask, message: dict[str, Any]) -> Any:
        """Turn a response into a task outcome; ``None`` requests local re-execution."""

        error = message.get("error")
        if task.type is TaskType.TEST:
            return message.get("result") if error is None else None
        if task.type in SINGLE_SCORE_TYPES and "score" in message:
            if error is not None:
                logger.warning("Task %s (%s) returned error '%s' with default score.", task.task_id, task.type.value, error)
            return clamp_score(message["score"])
        if task.type is TaskType.BATCH_ANALYSIS and message.get("results") is not None:
            if error is not None:
                logger.warning("Task %s (%s) returned error '%s' with default results.", task.task_id, task.type.value, error)
            return FrameAnalysisResult.from_payload(message["results"])
        logger.warning(
            "Task %s (%s) failed in background: %s; re-running locally.",
            task.task_id,
            task.type.value,
            error or "empty response",
        )
        return None

    def _expire_timeouts(self) -> None:
        now = self._clock()
        with self._lock:
            expired = [entry for entry in self._pending.values() if entry.deadline <= now]
            for entry in expired:
                del self._pending[entry.task.task_id]
        for entry in expired:
            logger.warning(
                "Task %s (%s) timed out after %.1fs; re-running locally.",
                entry.task.task_id,
                entry.task.type.value,
                entry.task.timeout_seconds,
            )
            self._settle_locally(entry)

    def _handle_context_failure(self, reason: str) -> None:
        with self._lock:
            if self._state is not DispatcherState.BACKGROUND:
                return
            pending = list(self._pending.values())
            self._pending.clear()
            context = self._context
            self._context = None
            self._reader = None
            self._stop_reader.set()
            self._state = DispatcherState.FALLBACK

        logger.warning(
            "Background context failed (%s); switching to fallback mode and re-running %d pending tasks.",
            reason,
            len(pending),
        )
        if context is not None:
            _terminate(context)
        for entry in pending:
            self._settle_locally(entry)

    def _settle_locally(self, entry: PendingTask) -> None:
        try:
            outcome = _execute_locally(entry.task)
        except Exception as exc:
            logger.exception("Local execution failed for task %s (%s)", entry.task.task_id, entry.task.type.value)
            _fail(entry.future, exc)
            return
        _resolve(entry.future, outcome)

    def _completed_locally(self, task: AnalysisTask) -> Future:
        future: Future = Future()
        try:
            future.set_result(_execute_locally(task))
        except Exception as exc:
            logger.exception("Local execution failed for task %s (%s)", task.task_id, task.type.value)
            future.set_exception(exc)
        return future


def _execute_locally(task: AnalysisTask) -> Any:
    if task.type is TaskType.TEST:
        return "ok"
    if task.buffer is None:
        raise ValueError(f"Task {task.task_id} ({task.type.value}) has no pixel buffer.")
    return run_analysis(task.type, task.buffer, task.options)


def _message_for(task: AnalysisTask) -> dict[str, Any]:
    if task.buffer is None:
        return task.to_message()
    return AnalysisTask(
        task_id=task.task_id,
        type=task.type,
        buffer=task.buffer.clone(),
        options=task.options,
        timeout_seconds=task.timeout_seconds,
    ).to_message()


def _resolve(future: Future, value: Any) -> None:
    if not future.done():
        future.set_result(value)


def _fail(future: Future, exc: BaseException) -> None:
    if not future.done():
        future.set_exception(exc)


def _terminate(context: BackgroundContext) -> None:
    try:
        context.terminate()
    except (OSError, ValueError) as exc:
        logger.warning("Failed to terminate background context cleanly: %s", exc)
