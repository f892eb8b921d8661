"""
Container Log Streams.

Follows one container's combined stdout/stderr for the lifetime of the
environment and fans every line out to synchronous subscribers.

Architecture:
1. subscribe() - readiness probes and watchers register BEFORE start()
2. start() - opens the Docker SDK log stream (replayed from container
   creation) and pumps it off the event loop
3. every complete line is handed back to the loop with
   call_soon_threadsafe; subscribers run there, one line at a time
4. close() - cancels the Docker stream and waits for the pump to exit

Subscribers never run concurrently with each other, so accumulators they
mutate need no locking.
"""

from __future__ import annotations

import asyncio
import codecs
import logging
import threading
from typing import TYPE_CHECKING, Any, Callable, Iterable

if TYPE_CHECKING:
    from docker.models.containers import Container

logger = logging.getLogger(__name__)

LineListener = Callable[[str], None]
CloseListener = Callable[[], None]

# How long close() waits for the pump thread to notice the cancelled stream
PUMP_SHUTDOWN_TIMEOUT = 5.0


class LineSplitter:
    """Reassembles arbitrary byte chunks into text lines."""

    def __init__(self, encoding: str = "utf-8"):
        self.encoding = encoding
        # Incremental so a character split across frames decodes whole
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes | str) -> list[str]:
        """Add a chunk and return every line it completed (terminators kept)."""
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        self._buffer += chunk
        if "\n" not in self._buffer:
            return []

        *complete, self._buffer = self._buffer.split("\n")
        return [line + "\n" for line in complete]

    def flush(self) -> list[str]:
        """Return the unterminated tail, if any."""
        tail = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        return [tail] if tail else []


class ContainerLogStream:
    """
    Live log stream of one compose service.

    Usage:
        stream = ContainerLogStream("homeassistant", container)
        stream.subscribe(watcher)
        stream.start()
        ...
        await stream.close()
    """

    def __init__(self, service: str, container: "Container"):
        self.service = service
        self.container = container
        self._listeners: list[LineListener] = []
        self._close_listeners: list[CloseListener] = []
        self._loop: asyncio.AbstractEventLoop | None = None
        self._raw: Any = None
        self._thread: threading.Thread | None = None
        self._pump_done = asyncio.Event()
        self._closing = False
        self._ended = False
        self.lines_seen = 0

    @property
    def is_started(self) -> bool:
        return self._thread is not None

    @property
    def is_ended(self) -> bool:
        return self._ended

    def subscribe(self, listener: LineListener) -> Callable[[], None]:
        """Register a line listener. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def subscribe_closed(self, listener: CloseListener) -> None:
        """Register a callback for when the stream ends."""
        self._close_listeners.append(listener)

    def start(self) -> None:
        """Open the Docker log stream and start pumping it."""
        if self._thread is not None:
            raise RuntimeError(f"Log stream for '{self.service}' already started")

        self._loop = asyncio.get_running_loop()
        self._raw = self.container.logs(
            stream=True,
            follow=True,
            stdout=True,
            stderr=True,
        )
        # Never returns while the container runs; kept off the shared executor
        self._thread = threading.Thread(
            target=self._pump,
            args=(self._raw,),
            name=f"logs-{self.service}",
            daemon=True,
        )
        self._thread.start()
        logger.debug(f"Following logs of '{self.service}'")

    def _pump(self, raw: Iterable[bytes]) -> None:
        """Read the blocking Docker stream (runs in the stream's own thread)."""
        splitter = LineSplitter()
        try:
            for chunk in raw:
                if self._closing:
                    break
                for line in splitter.feed(chunk):
                    self._post(self._dispatch, line)
            for line in splitter.flush():
                self._post(self._dispatch, line)
        except Exception as e:
            if not self._closing:
                logger.warning(f"Log stream of '{self.service}' failed: {e}")
        finally:
            self._post(self._finish)

    def _post(self, callback: Callable[..., None], *args: Any) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(callback, *args)
        except RuntimeError:
            # Loop shut down between the check and the call
            pass

    def _dispatch(self, line: str) -> None:
        if self._closing:
            return
        self.lines_seen += 1
        for listener in list(self._listeners):
            try:
                listener(line)
            except Exception:
                logger.exception(f"Listener on '{self.service}' failed for line {line!r}")

    def _finish(self) -> None:
        self._pump_done.set()
        if self._ended:
            return
        self._ended = True
        logger.debug(f"Log stream of '{self.service}' ended after {self.lines_seen} lines")
        for listener in list(self._close_listeners):
            listener()

    async def close(self) -> None:
        """Stop following the container and release the stream."""
        if self._closing:
            return
        self._closing = True
        self._listeners.clear()
        self._close_listeners.clear()

        if self._raw is not None and hasattr(self._raw, "close"):
            try:
                self._raw.close()
            except Exception as e:
                logger.debug(f"Closing log stream of '{self.service}': {e}")

        if self._thread is not None:
            try:
                await asyncio.wait_for(self._pump_done.wait(), timeout=PUMP_SHUTDOWN_TIMEOUT)
            except asyncio.TimeoutError:
                logger.warning(f"Log pump of '{self.service}' did not stop in time")
                return
            self._thread.join(timeout=PUMP_SHUTDOWN_TIMEOUT)
