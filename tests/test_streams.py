"""
Tests for container log streams.
"""

import asyncio
from concurrent.futures import ThreadPoolExecutor

import pytest

from e2e_harness.streams import ContainerLogStream, LineSplitter
from tests.fakes import FakeContainer, eventually


# =============================================================================
# Line Splitter Tests
# =============================================================================


class TestLineSplitter:
    """Tests for LineSplitter."""

    def test_complete_lines(self):
        """Every newline completes a line; terminators are kept."""
        splitter = LineSplitter()
        assert splitter.feed(b"one\ntwo\n") == ["one\n", "two\n"]

    def test_partial_chunks_are_joined(self):
        """A line split across chunks is delivered once complete."""
        splitter = LineSplitter()
        assert splitter.feed(b"mosquitto vers") == []
        assert splitter.feed(b"ion 2.0.18 running\nnext") == ["mosquitto version 2.0.18 running\n"]
        assert splitter.flush() == ["next"]
        assert splitter.flush() == []

    def test_invalid_utf8_replaced(self):
        """Undecodable bytes do not break the stream."""
        lines = LineSplitter().feed(b"bad \xff byte\n")
        assert len(lines) == 1
        assert lines[0].startswith("bad ")

    def test_character_split_across_chunks(self):
        """A multi-byte character cut between frames decodes intact."""
        splitter = LineSplitter()
        assert splitter.feed(b"rika/stove/temperature 19.6 \xc2") == []
        assert splitter.feed(b"\xb0C\n") == ["rika/stove/temperature 19.6 °C\n"]

    def test_truncated_character_at_end(self):
        """An incomplete trailing sequence is replaced on flush."""
        splitter = LineSplitter()
        assert splitter.feed(b"tail \xc2") == []
        assert splitter.flush() == ["tail �"]

    def test_accepts_text(self):
        """Already-decoded chunks pass through."""
        assert LineSplitter().feed("a\n") == ["a\n"]


# =============================================================================
# Container Log Stream Tests
# =============================================================================


class TestContainerLogStream:
    """Tests for ContainerLogStream."""

    @pytest.mark.asyncio
    async def test_follows_both_outputs(self):
        """The Docker stream is opened in follow mode for stdout and stderr."""
        container = FakeContainer("homeassistant")
        stream = ContainerLogStream("homeassistant", container)
        stream.start()
        try:
            assert container.logs_kwargs == {
                "stream": True,
                "follow": True,
                "stdout": True,
                "stderr": True,
            }
            assert stream.is_started
        finally:
            await stream.close()

    @pytest.mark.asyncio
    async def test_replayed_and_live_lines_in_order(self):
        """Subscribers see earlier output first, then live lines, in order."""
        container = FakeContainer("mosquitto-debug", ["first", "second"])
        stream = ContainerLogStream("mosquitto-debug", container)
        seen: list[str] = []
        stream.subscribe(seen.append)
        stream.start()
        try:
            container.emit("third")
            await eventually(lambda: len(seen) == 3)
            assert seen == ["first\n", "second\n", "third\n"]
            assert stream.lines_seen == 3
        finally:
            await stream.close()

    @pytest.mark.asyncio
    async def test_fan_out_to_all_subscribers(self):
        """Every subscriber receives every line."""
        container = FakeContainer("svc", ["a"])
        stream = ContainerLogStream("svc", container)
        left: list[str] = []
        right: list[str] = []
        stream.subscribe(left.append)
        stream.subscribe(right.append)
        stream.start()
        try:
            await eventually(lambda: left and right)
            assert left == right == ["a\n"]
        finally:
            await stream.close()

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        """An unsubscribed listener stops receiving lines."""
        container = FakeContainer("svc", ["a"])
        stream = ContainerLogStream("svc", container)
        kept: list[str] = []
        dropped: list[str] = []
        stream.subscribe(kept.append)
        unsubscribe = stream.subscribe(dropped.append)
        unsubscribe()
        unsubscribe()
        stream.start()
        try:
            await eventually(lambda: kept)
            assert dropped == []
        finally:
            await stream.close()

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_stop_others(self):
        """One broken subscriber is logged, the rest keep going."""
        container = FakeContainer("svc", ["a", "b"])
        stream = ContainerLogStream("svc", container)

        def broken(line):
            raise ValueError("boom")

        seen: list[str] = []
        stream.subscribe(broken)
        stream.subscribe(seen.append)
        stream.start()
        try:
            await eventually(lambda: len(seen) == 2)
        finally:
            await stream.close()

    @pytest.mark.asyncio
    async def test_end_notifies_close_listeners(self):
        """A container exiting ends the stream and fires close listeners."""
        container = FakeContainer("svc", ["last words"])
        stream = ContainerLogStream("svc", container)
        ended: list[bool] = []
        stream.subscribe_closed(lambda: ended.append(True))
        stream.start()
        try:
            container.output.end()
            await eventually(lambda: stream.is_ended)
            assert ended == [True]
        finally:
            await stream.close()

    @pytest.mark.asyncio
    async def test_close_stops_delivery(self):
        """Nothing reaches subscribers after close()."""
        container = FakeContainer("svc")
        stream = ContainerLogStream("svc", container)
        seen: list[str] = []
        stream.subscribe(seen.append)
        stream.start()

        await stream.close()
        container.emit("late")

        assert container.output.closed
        assert seen == []
        # closing twice is harmless
        await stream.close()

    @pytest.mark.asyncio
    async def test_start_twice_rejected(self):
        """A stream is pumped at most once."""
        stream = ContainerLogStream("svc", FakeContainer("svc"))
        stream.start()
        try:
            with pytest.raises(RuntimeError):
                stream.start()
        finally:
            await stream.close()

    @pytest.mark.asyncio
    async def test_streams_do_not_hold_executor_workers(self):
        """More streams than executor workers all keep delivering."""
        loop = asyncio.get_running_loop()
        loop.set_default_executor(ThreadPoolExecutor(max_workers=1))

        containers = [FakeContainer(name) for name in ("homeassistant", "mosquitto", "mosquitto-debug")]
        streams = [ContainerLogStream(c.name, c) for c in containers]
        seen: dict[str, list[str]] = {c.name: [] for c in containers}
        for stream in streams:
            stream.subscribe(seen[stream.service].append)
            stream.start()
        try:
            for container in containers:
                container.emit("hello")
            await eventually(lambda: all(seen.values()))

            # the shared executor is still free for other work
            assert await asyncio.to_thread(lambda: "free") == "free"
        finally:
            await asyncio.gather(*(s.close() for s in streams))
