"""Tests for TrackQueue cursor handling and Track construction."""

import pytest

from module.bili_player.core.queue import Track, TrackQueue
from module.bili_player.core.state import LoopMode

from conftest import make_info


@pytest.fixture
def queue():
    q = TrackQueue()
    for i in range(3):
        q.enqueue(make_info(i))
    return q


class TestTrack:
    def test_from_info_keeps_unknown_fields_as_metadata(self) -> None:
        track = Track.from_info(make_info(1, view_count=42), requested_by=7)
        assert track.title == "Track 1"
        assert track.requested_by == 7
        assert track.metadata == {"view_count": 42}

    def test_from_info_defaults(self) -> None:
        track = Track.from_info({})
        assert track.title == "未知標題"
        assert track.duration == 0
        assert track.audio_url == ""

    @pytest.mark.parametrize("seconds, expected", [(0, "0:00"), (65, "1:05"), (3725, "1:02:05")])
    def test_format_duration(self, seconds, expected) -> None:
        assert Track(title="t", duration=seconds).format_duration() == expected


class TestEnqueue:
    def test_enqueue_stamps_id_and_time(self) -> None:
        q = TrackQueue()
        track = q.enqueue(make_info(0), requested_by=5)
        assert track.id
        assert track.added_at > 0
        assert track.requested_by == 5

    def test_enqueue_does_not_move_cursor(self, queue) -> None:
        assert queue.current_index == -1
        assert queue.current_track is None

    def test_ids_are_unique(self, queue) -> None:
        assert len({t.id for t in queue}) == 3


class TestRemoveAt:
    def test_invalid_index(self, queue) -> None:
        assert queue.remove_at(5) is False
        assert queue.remove_at(-1) is False
        assert len(queue) == 3

    def test_remove_before_cursor_shifts_cursor(self, queue) -> None:
        queue.set_index(2)
        current = queue.current_track
        assert queue.remove_at(0)
        assert queue.current_index == 1
        assert queue.current_track is current

    def test_remove_after_cursor_keeps_cursor(self, queue) -> None:
        queue.set_index(0)
        queue.remove_at(2)
        assert queue.current_index == 0

    def test_remove_current_keeps_position(self, queue) -> None:
        queue.set_index(1)
        following = queue.get(2)
        queue.remove_at(1)
        assert queue.current_index == 1
        assert queue.current_track is following

    def test_remove_current_last_clamps(self, queue) -> None:
        queue.set_index(2)
        queue.remove_at(2)
        assert queue.current_index == 1

    def test_remove_only_track_resets_cursor(self) -> None:
        q = TrackQueue()
        q.enqueue(make_info(0))
        q.set_index(0)
        q.remove_at(0)
        assert q.current_index == -1
        assert q.current_track is None


class TestClear:
    def test_keep_current(self, queue) -> None:
        queue.set_index(1)
        current = queue.current_track
        assert queue.clear(keep_current=True) == 2
        assert list(queue) == [current]
        assert queue.current_index == 0

    def test_full_clear(self, queue) -> None:
        queue.set_index(1)
        assert queue.clear(keep_current=False) == 3
        assert queue.is_empty
        assert queue.current_index == -1

    def test_keep_current_without_current_empties(self, queue) -> None:
        assert queue.clear(keep_current=True) == 3
        assert queue.is_empty


class TestShuffle:
    def test_current_pinned_to_front(self) -> None:
        q = TrackQueue()
        for i in range(5):
            q.enqueue(make_info(i))
        q.set_index(2)
        current = q.current_track
        before = sorted(t.id for t in q)

        q.shuffle()

        assert q.get(0) is current
        assert q.current_index == 0
        assert sorted(t.id for t in q) == before

    def test_without_current_keeps_all(self, queue) -> None:
        before = sorted(t.id for t in queue)
        queue.shuffle()
        assert sorted(t.id for t in queue) == before
        assert queue.current_index == -1


class TestNavigation:
    @pytest.mark.parametrize("mode, index, expected", [
        (LoopMode.NONE, 0, 1),
        (LoopMode.NONE, 2, None),
        (LoopMode.QUEUE, 2, 0),
        (LoopMode.TRACK, 2, 2),
        (LoopMode.TRACK, 0, 1),
    ])
    def test_next_index(self, queue, mode, index, expected) -> None:
        queue.set_index(index)
        assert queue.next_index(mode) == expected

    @pytest.mark.parametrize("mode, index, expected", [
        (LoopMode.NONE, 2, 1),
        (LoopMode.NONE, 0, None),
        (LoopMode.QUEUE, 0, 2),
        (LoopMode.TRACK, 0, 0),
    ])
    def test_previous_index(self, queue, mode, index, expected) -> None:
        queue.set_index(index)
        assert queue.previous_index(mode) == expected

    def test_empty_queue_has_no_neighbours(self) -> None:
        q = TrackQueue()
        for mode in LoopMode:
            assert q.next_index(mode) is None
            assert q.previous_index(mode) is None

    def test_set_index_rejects_out_of_range(self, queue) -> None:
        assert queue.set_index(3) is None
        assert queue.current_index == -1

    def test_resume_index_after_exhaustion(self, queue) -> None:
        queue.set_index(2)
        queue.mark_exhausted()
        assert queue.current_index == -1
        assert queue.resume_index() == 0

        queue.enqueue(make_info(3))
        assert queue.resume_index() == 3

    def test_resume_index_follows_removal(self, queue) -> None:
        queue.mark_exhausted()
        queue.enqueue(make_info(3))
        queue.remove_at(0)
        assert queue.resume_index() == 2
        assert queue.get(2).title == "Track 3"


class TestPaging:
    def test_get_page_is_one_based(self) -> None:
        q = TrackQueue()
        for i in range(12):
            q.enqueue(make_info(i))
        q.set_index(10)

        page = q.get_page(2, per_page=10)
        assert page["start_index"] == 11
        assert page["current_index"] == 11
        assert page["total_pages"] == 2
        assert [t.title for t in page["tracks"]] == ["Track 10", "Track 11"]

    def test_get_page_clamps(self, queue) -> None:
        page = queue.get_page(9, per_page=10)
        assert page["current_page"] == 1
        assert page["current_index"] == 0

    def test_get_upcoming(self, queue) -> None:
        queue.set_index(0)
        assert [t.title for t in queue.get_upcoming(5)] == ["Track 1", "Track 2"]
