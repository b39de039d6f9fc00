"""Tests for the GuildPlayer state machine."""

import asyncio
import random

import pytest

from module.bili_player.core.state import LoopMode, PlayerStatus
from module.bili_player.utils.errors import PipelineError, PipelineSupersededError, TranscoderMissingError

from conftest import make_info


def rewind(player, seconds: float) -> None:
    """Pretend the current track started `seconds` ago."""
    player.clock._start_time -= seconds


class TestPlayNext:
    @pytest.mark.asyncio
    async def test_starts_at_first_track(self, make_player) -> None:
        player = make_player(3)
        assert await player.play_next() is True
        assert player.current_index == 0
        assert player.is_playing
        assert player.pipeline.starts == [player.queue.get(0)]

    @pytest.mark.asyncio
    async def test_keeps_existing_position(self, make_player) -> None:
        player = make_player(3)
        player.queue.set_index(1)
        await player.play_next()
        await player.pause()
        await player.resume()
        await player.play_next()
        assert player.current_index == 1

    @pytest.mark.asyncio
    async def test_empty_queue(self, make_player) -> None:
        player = make_player(0)
        assert await player.play_next() is False
        assert player.status is PlayerStatus.IDLE

    @pytest.mark.asyncio
    async def test_without_connection(self, make_player) -> None:
        player = make_player(1)
        player.attach_connection(None)
        assert await player.play_next() is False
        assert player.pipeline.starts == []

    @pytest.mark.asyncio
    async def test_resolves_audio_lazily(self, make_player) -> None:
        player = make_player(0)
        player.queue.enqueue(make_info(0, audio_url=""))
        await player.play_next()
        track = player.current_track
        assert track.audio_url == track.url + "#audio"


class TestSkip:
    @pytest.mark.asyncio
    async def test_advances(self, make_player) -> None:
        player = make_player(3)
        await player.play_next()
        assert await player.skip() is True
        assert player.current_index == 1

    @pytest.mark.asyncio
    async def test_queue_loop_wraps(self, make_player) -> None:
        player = make_player(3, loop_mode=LoopMode.QUEUE)
        player.queue.set_index(2)
        await player.play_current()

        assert await player.skip() is True
        assert player.current_index == 0
        assert player.current_track is player.queue.get(0)

    @pytest.mark.asyncio
    async def test_track_loop_at_tail_replays_same_index(self, make_player) -> None:
        player = make_player(3, loop_mode=LoopMode.TRACK)
        player.queue.set_index(2)
        await player.play_current()
        track = player.current_track
        starts = len(player.pipeline.starts)

        assert await player.skip() is True
        assert player.current_index == 2
        assert player.current_track is track
        assert len(player.pipeline.starts) == starts + 1

    @pytest.mark.asyncio
    async def test_end_of_queue_without_loop(self, make_player, published) -> None:
        player = make_player(3)
        player.queue.set_index(2)
        await player.play_current()

        assert await player.skip() is False
        assert player.current_track is None
        assert player.current_index == -1
        assert player.is_playing is False
        assert len(player.queue) == 3
        assert player.pipeline.stops == 1
        assert player.connection is not None
        assert published[-1].state.current_index == -1

    @pytest.mark.asyncio
    async def test_refill_after_exhaustion_plays_new_track(self, make_player) -> None:
        player = make_player(3)
        player.queue.set_index(2)
        await player.play_current()
        await player.skip()

        await player.enqueue(make_info(9))
        await player.play_next()

        assert player.current_index == 3
        assert player.current_track.title == "Track 9"


class TestPrevious:
    @pytest.mark.asyncio
    async def test_steps_back(self, make_player) -> None:
        player = make_player(3)
        player.queue.set_index(2)
        assert await player.previous() is True
        assert player.current_index == 1

    @pytest.mark.asyncio
    async def test_at_start_without_loop(self, make_player) -> None:
        player = make_player(3)
        player.queue.set_index(0)
        assert await player.previous() is False
        assert player.current_index == 0

    @pytest.mark.asyncio
    async def test_queue_loop_wraps_to_last(self, make_player) -> None:
        player = make_player(3, loop_mode=LoopMode.QUEUE)
        player.queue.set_index(0)
        assert await player.previous() is True
        assert player.current_index == 2


class TestPauseResume:
    @pytest.mark.asyncio
    async def test_pause_requires_playing(self, make_player) -> None:
        player = make_player(1)
        assert await player.pause() is False

    @pytest.mark.asyncio
    async def test_round_trip(self, make_player, published) -> None:
        player = make_player(1)
        await player.play_next()

        assert await player.pause() is True
        assert player.is_paused
        assert published[-1].state.is_paused

        assert await player.resume() is True
        assert player.is_playing

    @pytest.mark.asyncio
    async def test_resume_requires_paused(self, make_player) -> None:
        player = make_player(1)
        await player.play_next()
        assert await player.resume() is False


class TestStop:
    @pytest.mark.asyncio
    async def test_stop_clears_and_disconnects(self, make_player) -> None:
        player = make_player(3)
        connection = player.connection
        await player.play_next()

        assert await player.stop() is True
        assert player.queue.is_empty
        assert player.current_index == -1
        assert player.status is PlayerStatus.STOPPED
        assert connection.disconnected
        assert player.connection is None

    @pytest.mark.asyncio
    async def test_reset_returns_to_idle(self, make_player) -> None:
        player = make_player(2)
        await player.play_next()
        await player.reset()
        assert player.status is PlayerStatus.IDLE
        assert player.queue.is_empty


def gate_resolver(player):
    """Hold lazy audio resolution until the returned event is set."""
    released = asyncio.Event()

    async def resolve(url):
        await released.wait()
        return {"audio_url": url + "#audio", "duration": 60}

    player._resolver = resolve
    return released


class TestPendingStart:
    @pytest.mark.asyncio
    async def test_stop_cancels_pending_start(self, make_player) -> None:
        player = make_player(0)
        player.queue.enqueue(make_info(0, audio_url=""))
        released = gate_resolver(player)

        pending = asyncio.create_task(player.play_next())
        await asyncio.sleep(0)
        await player.stop()
        released.set()

        assert await pending is False
        assert player.status is PlayerStatus.STOPPED
        assert player.current_track is None
        assert player.pipeline.starts == []

    @pytest.mark.asyncio
    async def test_reset_cancels_pending_start(self, make_player) -> None:
        player = make_player(0)
        player.queue.enqueue(make_info(0, audio_url=""))
        released = gate_resolver(player)

        pending = asyncio.create_task(player.play_next())
        await asyncio.sleep(0)
        await player.reset()
        released.set()

        assert await pending is False
        assert player.status is PlayerStatus.IDLE
        assert player.current_track is None
        assert player.pipeline.starts == []

    @pytest.mark.asyncio
    async def test_skip_past_end_cancels_pending_start(self, make_player) -> None:
        player = make_player(0)
        player.queue.enqueue(make_info(0, audio_url=""))
        released = gate_resolver(player)

        pending = asyncio.create_task(player.play_next())
        await asyncio.sleep(0)
        assert await player.skip() is False
        released.set()

        assert await pending is False
        assert player.status is PlayerStatus.IDLE
        assert player.current_index == -1
        assert player.pipeline.starts == []

    @pytest.mark.asyncio
    async def test_resolver_error_after_stop_is_dropped(self, make_player) -> None:
        player = make_player(0)
        player.queue.enqueue(make_info(0, audio_url=""))
        released = asyncio.Event()

        async def resolve(url):
            await released.wait()
            raise PipelineError("gone")

        player._resolver = resolve
        pending = asyncio.create_task(player.play_next())
        await asyncio.sleep(0)
        await player.stop()
        released.set()

        assert await pending is False
        assert player.status is PlayerStatus.STOPPED


class TestQueueOperations:
    @pytest.mark.asyncio
    async def test_shuffle_pins_current(self, make_player) -> None:
        player = make_player(5)
        player.queue.set_index(2)
        current = player.current_track
        ids = sorted(t.id for t in player.queue)

        await player.shuffle()

        assert player.queue.get(0) is current
        assert player.current_index == 0
        assert sorted(t.id for t in player.queue) == ids

    @pytest.mark.asyncio
    async def test_clear_keeps_current(self, make_player) -> None:
        player = make_player(3)
        await player.play_next()
        current = player.current_track
        assert await player.clear() == 2
        assert list(player.queue) == [current]

    @pytest.mark.asyncio
    async def test_remove_current_while_playing_plays_next_in_place(self, make_player) -> None:
        player = make_player(3)
        player.queue.set_index(1)
        await player.play_current()
        following = player.queue.get(2)

        assert await player.remove_track(1) is True
        assert player.pipeline.stops == 1
        assert player.current_track is following
        assert player.pipeline.starts[-1] is following

    @pytest.mark.asyncio
    async def test_remove_other_track(self, make_player) -> None:
        player = make_player(3)
        await player.play_next()
        starts = len(player.pipeline.starts)
        assert await player.remove_track(2) is True
        assert len(player.queue) == 2
        assert len(player.pipeline.starts) == starts

    @pytest.mark.asyncio
    async def test_remove_invalid_index(self, make_player) -> None:
        player = make_player(1)
        assert await player.remove_track(4) is False

    @pytest.mark.asyncio
    async def test_set_loop_mode_accepts_string(self, make_player, published) -> None:
        player = make_player(1)
        assert await player.set_loop_mode("track") is LoopMode.TRACK
        assert published[-1].state.loop_mode is LoopMode.TRACK


class TestFalseIdleRetry:
    @pytest.mark.asyncio
    async def test_retry_bound_then_advance(self, make_player) -> None:
        player = make_player(3, duration=60)
        await player.play_next()
        track = player.current_track

        await player.on_track_idle(track)
        assert track.retry_count == 1
        assert player.current_index == 0

        await player.on_track_idle(track)
        assert track.retry_count == 2
        assert player.current_index == 0

        await player.on_track_idle(track)
        assert track.retry_count == 0
        assert player.current_index == 1
        # initial start + two retries + next track
        assert len(player.pipeline.starts) == 4

    @pytest.mark.asyncio
    async def test_legitimate_end_advances(self, make_player) -> None:
        player = make_player(3)
        await player.play_next()
        rewind(player, 30)
        await player.on_track_idle(player.current_track)
        assert player.current_index == 1

    @pytest.mark.asyncio
    async def test_short_track_reaching_tail_is_legitimate(self, make_player) -> None:
        player = make_player(2, duration=2)
        await player.play_next()
        rewind(player, 0.5)
        await player.on_track_idle(player.current_track)
        assert player.current_index == 1

    @pytest.mark.asyncio
    async def test_track_loop_repeat_resets_retry_count(self, make_player) -> None:
        player = make_player(3, loop_mode=LoopMode.TRACK)
        player.queue.set_index(1)
        await player.play_current()
        track = player.current_track
        track.retry_count = 1

        rewind(player, 30)
        await player.on_track_idle(track)

        assert track.retry_count == 0
        assert player.current_index == 1
        assert player.pipeline.starts[-1] is track

    @pytest.mark.asyncio
    async def test_stale_idle_signal_ignored(self, make_player) -> None:
        player = make_player(3)
        await player.play_next()
        old = player.current_track
        await player.skip()
        starts = len(player.pipeline.starts)

        await player.on_track_idle(old)
        assert len(player.pipeline.starts) == starts
        assert player.current_index == 1


class TestTrackEnd:
    @pytest.mark.asyncio
    async def test_track_loop_replays_mid_queue(self, make_player) -> None:
        player = make_player(3, loop_mode=LoopMode.TRACK)
        player.queue.set_index(1)
        await player.play_current()
        await player.handle_track_end()
        assert player.current_index == 1
        assert len(player.pipeline.starts) == 2

    @pytest.mark.asyncio
    async def test_error_advances(self, make_player) -> None:
        player = make_player(3)
        await player.play_next()
        await player.on_track_error(player.current_track, PipelineError("boom"))
        assert player.current_index == 1

    @pytest.mark.asyncio
    async def test_failing_tracks_are_skipped(self, make_player) -> None:
        player = make_player(3)
        await player.play_next()
        player.pipeline.failures = [PipelineError("bad"), PipelineError("bad")]

        await player.handle_track_end()

        # both remaining tracks fail, so playback runs off the end of the queue
        assert player.pipeline.starts == [player.queue.get(0)]
        assert player.status is PlayerStatus.IDLE

    @pytest.mark.asyncio
    async def test_one_failing_track_is_skipped(self, make_player) -> None:
        player = make_player(3)
        await player.play_next()
        player.pipeline.failures = [PipelineError("bad")]

        await player.handle_track_end()

        assert player.current_index == 2
        assert player.is_playing


class TestPlayCurrentFailures:
    @pytest.mark.asyncio
    async def test_fatal_error_propagates_and_keeps_connection(self, make_player, published) -> None:
        player = make_player(1)
        player.pipeline.failures = [TranscoderMissingError()]

        with pytest.raises(TranscoderMissingError):
            await player.play_next()

        assert player.status is PlayerStatus.IDLE
        assert player.connection is not None
        assert published[-1].state.status is PlayerStatus.IDLE

    @pytest.mark.asyncio
    async def test_superseded_start_is_not_an_error(self, make_player) -> None:
        player = make_player(1)
        player.pipeline.failures = [PipelineSupersededError(1)]
        assert await player.play_next() is True


class TestState:
    @pytest.mark.asyncio
    async def test_snapshot_shape(self, make_player) -> None:
        player = make_player(3, loop_mode=LoopMode.QUEUE)
        await player.play_next()
        data = player.get_state().to_dict()
        assert data == {
            "isPlaying": True,
            "isPaused": False,
            "currentTrack": player.current_track.to_dict(),
            "currentIndex": 0,
            "queueLength": 3,
            "hasNext": True,
            "hasPrevious": True,
            "loopMode": "queue",
        }

    @pytest.mark.asyncio
    async def test_plain_mode_navigation_flags(self, make_player) -> None:
        player = make_player(2)
        await player.play_next()
        state = player.get_state()
        assert state.has_next is True
        assert state.has_previous is False


class TestIndexInvariant:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("seed", range(5))
    async def test_random_operations(self, make_player, seed) -> None:
        rng = random.Random(seed)
        player = make_player(2, loop_mode=rng.choice(list(LoopMode)))
        queue = player.queue

        for step in range(60):
            op = rng.choice(["enqueue", "remove", "skip", "previous"])
            if op == "enqueue":
                await player.enqueue(make_info(step))
            elif op == "remove" and len(queue):
                await player.remove_track(rng.randrange(len(queue)))
            elif op == "skip":
                await player.skip()
            elif op == "previous":
                await player.previous()

            index = queue.current_index
            assert index == -1 or 0 <= index < len(queue)
            if player.current_track is not None:
                assert player.current_track is queue.get(index)
