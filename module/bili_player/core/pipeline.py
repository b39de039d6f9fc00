"""
播放管線

PipelineHandle 包住單一曲目的 FFmpeg 程序，狀態機：
    STARTING → RUNNING → TERMINATING → TERMINATED

PlaybackPipeline 保證同一個播放器同時最多只有一個存活的 handle：
- 啟動新 handle 前先終止舊的（關閉 stdin → SIGTERM → 寬限期後 SIGKILL）
- 每次 start() 取得一個世代編號，等待途中世代被更新就丟棄自己的結果
- 以 stdout/stderr 的位元組到達時間作為心跳，過久沒有輸出就終止程序
"""

import asyncio
import subprocess
import threading
import time
from collections import deque
from enum import Enum
from typing import Any, Awaitable, Callable, Optional
from loguru import logger

from ..constants import (
    CONNECTION_READY_TIMEOUT,
    FFMPEG_CHECK_INTERVAL,
    FFMPEG_INACTIVE_KILL,
    FFMPEG_INACTIVE_WARNING,
    FIRST_CHUNK_TIMEOUT,
    FRAME_SIZE,
    GRACEFUL_EXIT_CODES,
    PROCESS_KILL_GRACE,
)
from ..utils.errors import (
    ConnectionTimeoutError,
    PipelineError,
    PipelineSupersededError,
    ProcessExitError,
    ProcessInactiveError,
    ResourceCreationError,
)
from ..voice.source import PipelineAudioSource
from .queue import Track

IdleCallback = Callable[[Track], Awaitable[Any]]
ErrorCallback = Callable[[Track, PipelineError], Awaitable[Any]]


class HandleState(str, Enum):
    STARTING = "starting"
    RUNNING = "running"
    TERMINATING = "terminating"
    TERMINATED = "terminated"


class PipelineHandle:
    """單一曲目的轉碼程序與其輸出"""

    def __init__(self, process: subprocess.Popen, track: Track, generation: int):
        self.process = process
        self.track = track
        self.generation = generation
        self.state = HandleState.STARTING
        self.paused = False
        # 被主動停止的 handle，其結束訊號不回報給播放器
        self.retired = False
        self.failure: Optional[PipelineError] = None
        self.last_activity = time.monotonic()

        self._buffer = b""
        self._stderr_tail: deque = deque(maxlen=10)
        self._terminated = asyncio.Event()

    # === 狀態 ===

    @property
    def pid(self) -> Optional[int]:
        return getattr(self.process, "pid", None)

    @property
    def is_alive(self) -> bool:
        return self.process.poll() is None

    @property
    def idle_seconds(self) -> float:
        return time.monotonic() - self.last_activity

    @property
    def stderr_tail(self) -> str:
        return " | ".join(self._stderr_tail)

    def touch(self) -> None:
        self.last_activity = time.monotonic()

    def mark_running(self) -> None:
        if self.state is HandleState.STARTING:
            self.state = HandleState.RUNNING

    def exit_failure(self) -> Optional[ProcessExitError]:
        """非零且非訊號導致的結束代碼"""
        code = self.process.poll()
        if code is None or code in GRACEFUL_EXIT_CODES:
            return None
        return ProcessExitError(code, self.stderr_tail)

    # === 讀取 ===

    def start_stderr_reader(self) -> None:
        """背景執行緒讀取 stderr，同時作為心跳來源"""
        stderr = self.process.stderr
        if stderr is None:
            return

        def _drain() -> None:
            try:
                for line in iter(stderr.readline, b""):
                    self.touch()
                    text = line.decode(errors="replace").strip()
                    if text:
                        self._stderr_tail.append(text)
            except (OSError, ValueError):
                return

        threading.Thread(target=_drain, name=f"ffmpeg-stderr-{self.pid}", daemon=True).start()

    def _read_stdout(self, size: int) -> bytes:
        stdout = self.process.stdout
        if stdout is None:
            return b""
        try:
            data = stdout.read(size)
        except (OSError, ValueError):
            return b""
        if data:
            self.touch()
        return data or b""

    def read(self, size: int) -> bytes:
        """給語音執行緒呼叫，先吐出預讀的第一塊"""
        if self._buffer:
            data, self._buffer = self._buffer[:size], self._buffer[size:]
            if len(data) < size:
                data += self._read_stdout(size - len(data))
            return data
        return self._read_stdout(size)

    async def prefetch(self, size: int, timeout: float) -> None:
        """
        等待第一塊音訊

        Raises:
            ProcessInactiveError: 時限內沒有任何輸出
            PipelineError: 程序在輸出前就結束
        """
        loop = asyncio.get_running_loop()
        try:
            data = await asyncio.wait_for(
                loop.run_in_executor(None, self._read_stdout, size), timeout
            )
        except asyncio.TimeoutError:
            raise ProcessInactiveError(timeout) from None

        if not data:
            # 給程序一點時間結束，以取得結束代碼
            for _ in range(10):
                if not self.is_alive:
                    break
                await asyncio.sleep(0.05)
            raise self.exit_failure() or PipelineError(
                f"FFmpeg produced no audio: {self.stderr_tail or 'empty stream'}"
            )
        self._buffer = data

    # === 終止 ===

    def _close_stdin(self) -> None:
        stdin = self.process.stdin
        if stdin is None:
            return
        try:
            stdin.close()
        except (OSError, ValueError):
            pass

    async def wait_exit(self, timeout: float) -> bool:
        """等待程序自行結束"""
        deadline = time.monotonic() + timeout
        while self.is_alive and time.monotonic() < deadline:
            await asyncio.sleep(0.05)
        return not self.is_alive

    async def terminate(self, grace: float = PROCESS_KILL_GRACE) -> None:
        """關閉 stdin → SIGTERM → 寬限期後 SIGKILL"""
        if self.state is HandleState.TERMINATED:
            return
        if self.state is HandleState.TERMINATING:
            await self._terminated.wait()
            return

        self.state = HandleState.TERMINATING
        try:
            self._close_stdin()
            if self.is_alive:
                try:
                    self.process.terminate()
                except OSError:
                    pass
                if not await self.wait_exit(grace):
                    logger.warning(f"[PipelineHandle] FFmpeg (pid={self.pid}) 未在 {grace}s 內結束，強制終止")
                    try:
                        self.process.kill()
                    except OSError:
                        pass
                    await self.wait_exit(grace)
        finally:
            self.state = HandleState.TERMINATED
            self._terminated.set()
            logger.debug(f"[PipelineHandle] FFmpeg (pid={self.pid}) 已終止，代碼 {self.process.poll()}")


class PlaybackPipeline:
    """
    播放管線：曲目 → FFmpeg → 語音連線

    使用方式：
        pipeline = PlaybackPipeline(transcoder, guild_id=guild.id)
        pipeline.bind(on_idle=player.on_track_idle, on_error=player.on_track_error)
        await pipeline.start(track, connection)
    """

    def __init__(
        self,
        transcoder,
        *,
        guild_id: int = 0,
        ready_timeout: float = CONNECTION_READY_TIMEOUT,
        kill_grace: float = PROCESS_KILL_GRACE,
        first_chunk_timeout: float = FIRST_CHUNK_TIMEOUT,
        check_interval: float = FFMPEG_CHECK_INTERVAL,
        warning_threshold: float = FFMPEG_INACTIVE_WARNING,
        kill_threshold: float = FFMPEG_INACTIVE_KILL,
        source_factory: Callable[[PipelineHandle], Any] = PipelineAudioSource,
        on_idle: Optional[IdleCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ):
        self._transcoder = transcoder
        self._guild_id = guild_id
        self._ready_timeout = ready_timeout
        self._kill_grace = kill_grace
        self._first_chunk_timeout = first_chunk_timeout
        self._check_interval = check_interval
        self._warning_threshold = warning_threshold
        self._kill_threshold = kill_threshold
        self._source_factory = source_factory
        self._on_idle = on_idle
        self._on_error = on_error

        self._generation = 0
        self._handle: Optional[PipelineHandle] = None
        self._connection = None
        self._monitor_task: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def bind(self, *, on_idle: IdleCallback, on_error: ErrorCallback) -> None:
        self._on_idle = on_idle
        self._on_error = on_error

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def handle(self) -> Optional[PipelineHandle]:
        return self._handle

    @property
    def is_active(self) -> bool:
        return self._handle is not None and self._handle.state in (HandleState.STARTING, HandleState.RUNNING)

    def _ensure_current(self, generation: int) -> None:
        if generation != self._generation:
            raise PipelineSupersededError(generation)

    # === 啟動 ===

    async def start(self, track: Track, connection) -> PipelineHandle:
        """
        啟動曲目播放，成功交給語音連線後返回

        Raises:
            ConnectionTimeoutError: 語音連線未就緒
            PipelineSupersededError: 等待期間有更新的 start()/stop()
            TranscoderMissingError / ProcessExitError / ProcessInactiveError / ResourceCreationError
        """
        self._generation += 1
        generation = self._generation
        self._loop = asyncio.get_running_loop()
        logger.debug(f"[PlaybackPipeline] 伺服器 {self._guild_id} 啟動第 {generation} 代管線: {track.title}")

        # 1. 等待語音連線就緒
        if not connection.is_ready():
            try:
                await asyncio.wait_for(connection.wait_until_ready(), self._ready_timeout)
            except asyncio.TimeoutError:
                raise ConnectionTimeoutError(self._ready_timeout) from None
            self._ensure_current(generation)

        # 2. 先清掉舊的程序
        await self.cleanup()
        self._ensure_current(generation)

        # 3. 啟動轉碼
        process = self._transcoder.spawn(track.audio_url)
        handle = PipelineHandle(process, track, generation)
        self._handle = handle
        self._connection = connection
        handle.start_stderr_reader()

        # 4. 等第一塊音訊
        try:
            await handle.prefetch(FRAME_SIZE, self._first_chunk_timeout)
        except PipelineError:
            await self._discard(handle)
            self._ensure_current(generation)
            raise

        if generation != self._generation or handle is not self._handle:
            await self._discard(handle)
            raise PipelineSupersededError(generation)

        # 5. 交給語音連線
        try:
            source = self._source_factory(handle)
            connection.play(source, after=lambda error: self._on_after(handle, error))
        except Exception as e:
            await self._discard(handle)
            raise ResourceCreationError(str(e)) from e

        handle.mark_running()
        self._monitor_task = self._loop.create_task(self._monitor(handle))
        logger.info(f"[PlaybackPipeline] 伺服器 {self._guild_id} 開始播放: {track.title} (pid={handle.pid})")
        return handle

    async def _discard(self, handle: PipelineHandle) -> None:
        handle.retired = True
        if self._handle is handle:
            self._handle = None
        await handle.terminate(self._kill_grace)

    # === 停止 ===

    async def cleanup(self) -> None:
        """終止目前的 handle，並停止語音連線上的音訊"""
        handle, self._handle = self._handle, None
        task, self._monitor_task = self._monitor_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

        if handle is not None:
            handle.retired = True
        if self._connection is not None:
            self._connection.stop()
        if handle is not None:
            await handle.terminate(self._kill_grace)

    async def stop(self) -> None:
        """停止播放，並讓所有進行中的 start() 失效"""
        self._generation += 1
        await self.cleanup()

    def pause(self) -> bool:
        handle = self._handle
        if handle is None or handle.state is not HandleState.RUNNING or self._connection is None:
            return False
        self._connection.pause()
        handle.paused = True
        return True

    def resume(self) -> bool:
        handle = self._handle
        if handle is None or handle.state is not HandleState.RUNNING or self._connection is None:
            return False
        self._connection.resume()
        handle.paused = False
        handle.touch()
        return True

    # === 結束訊號 ===

    def _on_after(self, handle: PipelineHandle, error: Optional[Exception]) -> None:
        """discord 播放執行緒的 after 回調，轉交回事件迴圈"""
        if error:
            logger.error(f"[PlaybackPipeline] 播放器回報錯誤: {error}")
            if handle.failure is None:
                handle.failure = PipelineError(str(error))
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._handle_finished, handle)

    def _handle_finished(self, handle: PipelineHandle) -> None:
        if handle.retired or handle is not self._handle:
            logger.debug(f"[PlaybackPipeline] 忽略過期管線的結束訊號 (pid={handle.pid})")
            return
        self._handle = None
        asyncio.get_running_loop().create_task(self._finish(handle))

    async def _finish(self, handle: PipelineHandle) -> None:
        if not await handle.wait_exit(self._kill_grace):
            await handle.terminate(self._kill_grace)
        else:
            handle.state = HandleState.TERMINATED

        if handle.generation != self._generation:
            return

        failure = handle.failure or handle.exit_failure()
        if failure is not None:
            logger.warning(f"[PlaybackPipeline] 曲目異常結束: {handle.track.title} - {failure}")
            await self._dispatch(self._on_error, handle.track, failure)
        else:
            logger.debug(f"[PlaybackPipeline] 曲目串流結束: {handle.track.title}")
            await self._dispatch(self._on_idle, handle.track)

    async def _dispatch(self, callback: Optional[Callable[..., Awaitable[Any]]], *args) -> None:
        if callback is None:
            return
        try:
            await callback(*args)
        except Exception as e:
            logger.exception(f"[PlaybackPipeline] 回調執行失敗: {e}")

    # === 心跳監控 ===

    async def _monitor(self, handle: PipelineHandle) -> None:
        warned = False
        while handle.state is HandleState.RUNNING:
            await asyncio.sleep(self._check_interval)
            if handle.state is not HandleState.RUNNING:
                break
            if handle.paused:
                warned = False
                continue

            idle = handle.idle_seconds
            if idle > self._kill_threshold:
                logger.error(f"[PlaybackPipeline] FFmpeg {idle:.1f}s 沒有輸出，終止程序: {handle.track.title}")
                handle.failure = ProcessInactiveError(idle)
                await handle.terminate(self._kill_grace)
                if self._handle is handle and not handle.retired:
                    self._handle_finished(handle)
                break
            if idle > self._warning_threshold and not warned:
                logger.warning(f"[PlaybackPipeline] FFmpeg 已 {idle:.1f}s 沒有輸出: {handle.track.title}")
                warned = True
            elif idle <= self._warning_threshold:
                warned = False
