"""
Sequential event processing and the user-visible diagnostic channel.

All document-affecting operations are funneled through one EventProcessor:
a single worker thread takes events from a FIFO queue and processes each one
completely before starting the next. Long-running external actions (a dialog,
a print job) that report completion through a callback are turned into a
synchronous step with `await_completion`.
"""

import logging
import queue
import threading
from abc import ABC, abstractmethod
from concurrent.futures import Future
from typing import Any, Callable

from attrs import field, frozen

from formtree.exceptions import UserVisibleError

logger = logging.getLogger(__name__)


@frozen
class Diagnostic:
    """A message shown to the user."""

    message: str
    cause: BaseException | None = field(default=None, eq=False)

    @property
    def text(self) -> str:
        if self.cause is None:
            return self.message
        return f"{self.message}\n\n{self.cause}"


class DiagnosticChannel:
    """The single channel for user-visible failures.

    Reports are logged at error level, recorded, and forwarded to an optional
    sink such as a message box.

    Params:
        sink: Called with every Diagnostic
    """

    def __init__(self, sink: Callable[[Diagnostic], None] | None = None):
        self.sink = sink
        self.reports: list[Diagnostic] = []
        self._lock = threading.Lock()

    def report(self, message: str, cause: BaseException | None = None) -> Diagnostic:
        diagnostic = Diagnostic(message, cause)
        with self._lock:
            self.reports.append(diagnostic)
        logger.error(diagnostic.text)
        if self.sink is not None:
            self.sink(diagnostic)
        return diagnostic

    def report_error(self, error: UserVisibleError) -> Diagnostic:
        return self.report(error.message, error.cause)

    def clear(self) -> None:
        with self._lock:
            self.reports.clear()


@frozen
class Outcome:
    """Completion of an externally driven action; cancellation is just another outcome."""

    cancelled: bool = False
    result: Any = None


CompletionCallback = Callable[..., None]


def await_completion(
    start: Callable[[CompletionCallback], object],
    timeout: float | None = None,
) -> Outcome:
    """
    Start an action that reports completion through a callback and wait for it.

    `start` receives a `done(result=None, cancelled=False)` callback. Only the
    first call of `done` counts; later calls are ignored. If `start` raises,
    the exception is re-raised here instead of waiting.

    Params:
        start: Starts the action and hands `done` to it
        timeout: Seconds to wait, None waits forever

    Returns:
        Outcome passed to the first `done` call

    Raises:
        concurrent.futures.TimeoutError: If `done` was not called within `timeout`
    """
    future: Future = Future()
    lock = threading.Lock()

    def done(result: Any = None, cancelled: bool = False) -> None:
        with lock:
            if future.done():
                logger.debug("Ignoring repeated completion signal")
                return
            future.set_result(Outcome(cancelled=cancelled, result=result))

    try:
        start(done)
    except Exception as e:
        with lock:
            if not future.done():
                future.set_exception(e)
    return future.result(timeout=timeout)


class Event(ABC):
    """Unit of work for the EventProcessor; subclasses implement `run`."""

    @abstractmethod
    def run(self) -> None: ...
    def process(self, diagnostics: DiagnosticChannel) -> None:
        """Run the event; user-visible errors go to `diagnostics`, others are logged."""
        logger.debug(f"Processing event {self}")
        try:
            self.run()
        except UserVisibleError as e:
            diagnostics.report_error(e)
        except Exception:
            logger.exception(f"Event {self} failed")

    def __str__(self) -> str:
        return type(self).__name__


class CallableEvent(Event):
    """Event wrapping a plain callable."""

    def __init__(self, func: Callable[..., object], *args: Any, **kwargs: Any):
        self.func = func
        self.args = args
        self.kwargs = kwargs

    def run(self) -> None:
        self.func(*self.args, **self.kwargs)

    def __str__(self) -> str:
        return f"CallableEvent({getattr(self.func, '__name__', self.func)!r})"


_STOP = object()


class EventProcessor:
    """Single-consumer FIFO event queue.

    Params:
        diagnostics: Channel receiving user-visible errors of events
    """

    def __init__(self, diagnostics: DiagnosticChannel | None = None):
        self.diagnostics = diagnostics or DiagnosticChannel()
        self._queue: queue.Queue = queue.Queue()
        self._accepting = False
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        logger.debug("Starting event processor thread")
        self._thread = threading.Thread(target=self._work, name="formtree-events", daemon=True)
        self._thread.start()
        self.accept_events(True)

    def accept_events(self, accept: bool) -> None:
        """Enable or disable accepting events; rejected events are dropped."""
        self._accepting = accept
        logger.debug(f"Event processor {'accepts' if accept else 'blocks'} new events")

    @property
    def accepting(self) -> bool:
        return self._accepting

    def submit(self, event: Event | Callable[[], object]) -> bool:
        """
        Queue an event.

        Returns:
            False if events are currently not accepted
        """
        if not self._accepting:
            logger.debug(f"Dropping event {event}")
            return False
        if not isinstance(event, Event):
            event = CallableEvent(event)
        self._queue.put(event)
        return True

    def join(self) -> None:
        """Block until every queued event was processed."""
        self._queue.join()

    def stop(self, timeout: float | None = None) -> None:
        """Process the events queued so far, then end the worker thread."""
        self.accept_events(False)
        if self._thread is None:
            return
        self._queue.put(_STOP)
        self._thread.join(timeout)
        self._thread = None

    def _work(self) -> None:
        while True:
            event = self._queue.get()
            try:
                if event is _STOP:
                    logger.debug("Stopping event processor thread")
                    return
                event.process(self.diagnostics)
            finally:
                self._queue.task_done()
