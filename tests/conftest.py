"""Shared fakes for the player, pipeline and registry tests."""

import asyncio
import itertools
import threading
from unittest.mock import AsyncMock

import pytest

from module.bili_player.constants import FRAME_SIZE
from module.bili_player.core.events import StateBus
from module.bili_player.core.player import GuildPlayer
from module.bili_player.core.state import LoopMode

_pids = itertools.count(1000)


def make_info(n: int, duration: int = 60, **extra) -> dict:
    info = {
        "title": f"Track {n}",
        "duration": duration,
        "audio_url": f"https://upos.example/{n}.m4s",
        "url": f"https://www.bilibili.com/video/BV1xx411c7m{n % 10}",
        "uploader": "UP主",
        "thumbnail": "",
        "source_id": f"BV1xx411c7m{n % 10}",
    }
    info.update(extra)
    return info


class FakeStdout:
    """Serves the given bytes, then blocks (if asked) until the process dies."""

    def __init__(self, data: bytes, block: bool):
        self._data = data
        self._block = block
        self.closed = threading.Event()

    def read(self, size: int) -> bytes:
        if self._data:
            chunk, self._data = self._data[:size], self._data[size:]
            return chunk
        if self._block:
            self.closed.wait(5)
        return b""


class FakeStdin:
    def __init__(self, process: "FakeProcess"):
        self._process = process

    def close(self) -> None:
        self._process.events.append(("stdin_close", self._process.pid))


class FakeStderr:
    def readline(self) -> bytes:
        return b""


class FakeProcess:
    """Stand-in for subprocess.Popen running FFmpeg."""

    def __init__(
        self,
        data: bytes = b"\x00" * FRAME_SIZE * 4,
        *,
        block: bool = True,
        exit_code=None,
        ignore_term: bool = False,
        events: list = None,
    ):
        self.pid = next(_pids)
        self.events = events if events is not None else []
        self.returncode = exit_code
        self.ignore_term = ignore_term
        self.stdout = FakeStdout(data, block)
        self.stdin = FakeStdin(self)
        self.stderr = FakeStderr()

    def poll(self):
        return self.returncode

    def terminate(self) -> None:
        self.events.append(("terminate", self.pid))
        if not self.ignore_term:
            self.exit(-15)

    def kill(self) -> None:
        self.events.append(("kill", self.pid))
        self.exit(-9)

    def exit(self, code: int) -> None:
        if self.returncode is None:
            self.returncode = code
        self.stdout.closed.set()


class FakeTranscoder:
    """Hands out prepared processes in order."""

    def __init__(self, *processes):
        self.processes = list(processes)
        self.spawned = []

    def spawn(self, stream_url: str):
        process = self.processes.pop(0)
        if isinstance(process, Exception):
            raise process
        self.spawned.append((stream_url, process))
        return process


class FakeConnection:
    """Voice connection double: records play/stop calls, never reads audio."""

    def __init__(self, ready: bool = True, channel_id: int = 10):
        self.ready = ready
        self.channel_id = channel_id
        self.played = []
        self.stops = 0
        self.paused = False
        self.disconnected = False
        self.play_error = None

    def is_ready(self) -> bool:
        return self.ready

    async def wait_until_ready(self) -> None:
        while not self.ready:
            await asyncio.sleep(0.01)

    def play(self, source, after) -> None:
        if self.play_error is not None:
            raise self.play_error
        self.played.append((source, after))

    @property
    def after(self):
        return self.played[-1][1]

    def stop(self) -> None:
        self.stops += 1

    def pause(self) -> None:
        self.paused = True

    def resume(self) -> None:
        self.paused = False

    def is_playing(self) -> bool:
        return bool(self.played) and not self.paused

    def is_paused(self) -> bool:
        return self.paused

    async def disconnect(self) -> None:
        self.disconnected = True


class FakePipeline:
    """Records starts instead of spawning FFmpeg."""

    def __init__(self):
        self.starts = []
        self.stops = 0
        self.failures = []
        self.on_idle = None
        self.on_error = None

    def bind(self, *, on_idle, on_error) -> None:
        self.on_idle = on_idle
        self.on_error = on_error

    async def start(self, track, connection):
        if self.failures:
            raise self.failures.pop(0)
        self.starts.append(track)
        return object()

    async def stop(self) -> None:
        self.stops += 1

    def pause(self) -> bool:
        return True

    def resume(self) -> bool:
        return True


class FakeChannel:
    def __init__(self, channel_id: int = 10):
        self.id = channel_id
        self.name = f"voice-{channel_id}"


@pytest.fixture
def bus():
    return StateBus()


@pytest.fixture
def published(bus):
    events = []
    bus.subscribe(events.append)
    return events


@pytest.fixture
def make_player(bus):
    """Build a GuildPlayer wired to fakes; pass n tracks to pre-fill the queue."""

    def factory(n: int = 0, loop_mode: LoopMode = LoopMode.NONE, duration: int = 60):
        pipeline = FakePipeline()
        connection = FakeConnection()
        player = GuildPlayer(
            1,
            bus=bus,
            connector=AsyncMock(return_value=connection),
            resolver=AsyncMock(side_effect=lambda url: {"audio_url": url + "#audio", "duration": duration}),
            pipeline=pipeline,
            loop_mode=loop_mode,
            retry_delay=0,
        )
        player.attach_connection(connection)
        for i in range(n):
            player.queue.enqueue(make_info(i, duration=duration))
        return player

    return factory
