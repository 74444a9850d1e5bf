"""
Progress publishers.

The phase executor receives a publisher at construction time and calls it at
every transition. Publishing must not block; the executor treats any error
raised here as lost visibility for observers, never as a pipeline failure.

The CLI wires ConsolePublisher and LoggingPublisher. BroadcastPublisher is
for applications that embed GradingService behind a push channel (a
websocket or server-sent events handler); nothing in this package wires it.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import defaultdict

from .models import CompletionEvent, ErrorEvent, ProgressEvent

logger = logging.getLogger(__name__)


class ProgressPublisher(ABC):
    """Interface for delivering submission events to observers."""

    @abstractmethod
    def progress(self, event: ProgressEvent) -> None: ...

    @abstractmethod
    def complete(self, event: CompletionEvent) -> None: ...

    @abstractmethod
    def error(self, event: ErrorEvent) -> None: ...


class LoggingPublisher(ProgressPublisher):
    """Writes events to the log. Used when nobody is watching."""

    def progress(self, event: ProgressEvent) -> None:
        logger.info(
            "[%s] %s (%d%%) %s", event.submission_id, event.status.value, event.progress_percent, event.current_step
        )

    def complete(self, event: CompletionEvent) -> None:
        logger.info("[%s] completed with grade %s", event.submission.id, event.submission.grade.value)

    def error(self, event: ErrorEvent) -> None:
        logger.info("[%s] failed during %s: %s", event.submission_id, event.phase.value, event.error)


class ConsolePublisher(ProgressPublisher):
    """Prints events for the CLI."""

    def progress(self, event: ProgressEvent) -> None:
        line = f"  [{event.submission_id[:8]}] {event.progress_percent:3d}% {event.current_step}"
        if event.message:
            line += f" - {event.message}"
        print(line)

    def complete(self, event: CompletionEvent) -> None:
        submission = event.submission
        total = f"{submission.scores.total:.1f}" if submission.scores else "-"
        print(f"  [{submission.id[:8]}] done: {submission.grade.value.upper()} ({total}/100)")

    def error(self, event: ErrorEvent) -> None:
        print(f"  [{event.submission_id[:8]}] FAILED during {event.phase.value}: {event.error}")


class BroadcastPublisher(ProgressPublisher):
    """
    Fans events out to per-submission subscriber queues.

    Observers call `subscribe(submission_id)` and read event payloads (camelCase
    dictionaries with an added "event" key) from the returned queue. A web
    layer forwards those payloads to its clients and calls `unsubscribe` when
    the client goes away.
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, set[asyncio.Queue]] = defaultdict(set)

    def subscribe(self, submission_id: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers[submission_id].add(queue)
        return queue

    def unsubscribe(self, submission_id: str, queue: asyncio.Queue) -> None:
        queues = self._subscribers.get(submission_id)
        if queues is None:
            return
        queues.discard(queue)
        if not queues:
            del self._subscribers[submission_id]

    def _send(self, submission_id: str, name: str, payload: dict) -> None:
        for queue in list(self._subscribers.get(submission_id, ())):
            queue.put_nowait({"event": name, **payload})

    def progress(self, event: ProgressEvent) -> None:
        self._send(event.submission_id, "progress", event.to_payload())

    def complete(self, event: CompletionEvent) -> None:
        self._send(event.submission.id, "complete", event.to_payload())

    def error(self, event: ErrorEvent) -> None:
        self._send(event.submission_id, "error", event.to_payload())


class CompositePublisher(ProgressPublisher):
    """Delivers every event to several publishers; one failing does not stop the rest."""

    def __init__(self, *publishers: ProgressPublisher) -> None:
        self.publishers = list(publishers)

    def _each(self, method: str, event) -> None:
        for publisher in self.publishers:
            try:
                getattr(publisher, method)(event)
            except Exception:
                logger.exception("%s.%s raised", type(publisher).__name__, method)

    def progress(self, event: ProgressEvent) -> None:
        self._each("progress", event)

    def complete(self, event: CompletionEvent) -> None:
        self._each("complete", event)

    def error(self, event: ErrorEvent) -> None:
        self._each("error", event)
