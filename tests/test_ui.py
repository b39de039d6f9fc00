"""Tests for embeds, control views and the player panel renderer."""

from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from module.bili_player.core.events import StateBus
from module.bili_player.core.queue import Track, TrackQueue
from module.bili_player.core.state import LoopMode, PlayerState, PlayerStatus
from module.bili_player.ui.buttons import PlayerControlView, SearchSelectView
from module.bili_player.ui.embeds import EmbedBuilder
from module.bili_player.ui.interface import PlayerInterface

from conftest import make_info


def playing_state(**overrides) -> PlayerState:
    track = Track.from_info(make_info(0, duration=120), requested_by=7)
    values = dict(
        guild_id=1,
        is_playing=True,
        is_paused=False,
        current_track=track,
        current_index=0,
        queue_length=3,
        has_next=True,
        has_previous=False,
        loop_mode=LoopMode.QUEUE,
        status=PlayerStatus.PLAYING,
        position=60,
    )
    values.update(overrides)
    return PlayerState(**values)


def idle_state() -> PlayerState:
    return playing_state(
        is_playing=False, current_track=None, current_index=-1, queue_length=0,
        has_next=False, status=PlayerStatus.IDLE, position=0,
    )


def not_found() -> discord.NotFound:
    response = MagicMock(status=404, reason="Not Found")
    return discord.NotFound(response, "Unknown Message")


class TestEmbedBuilder:
    def test_now_playing(self) -> None:
        embed = EmbedBuilder().now_playing(playing_state())
        assert embed.description.startswith("1. [Track 0]")
        assert embed.author.name == "UP主"
        fields = {field.name: field.value for field in embed.fields}
        assert "1:00 / 2:00" in fields["狀態"]
        assert fields["點播"] == "<@7>"
        assert fields["佇列"] == "1 / 3"
        assert "清單循環" in embed.footer.text

    def test_now_playing_idle(self) -> None:
        embed = EmbedBuilder().now_playing(idle_state())
        assert embed.title.startswith("ℹ️")

    def test_queue_page_marks_current(self) -> None:
        queue = TrackQueue()
        for i in range(3):
            queue.enqueue(make_info(i))
        queue.set_index(1)
        page = queue.get_page(1, per_page=10)
        page["loop_mode"] = LoopMode.NONE

        embed = EmbedBuilder().queue_page(page)

        lines = embed.description.split("\n")
        assert lines[0].startswith("1. ")
        assert lines[1].startswith("▶️ 2. ")
        assert "總曲目數: 3" in embed.footer.text

    def test_error_carries_suggestion(self) -> None:
        embed = EmbedBuilder().error("無法連接到語音頻道", "請確認權限")
        assert embed.fields[0].name == "💡 建議"
        assert embed.fields[0].value == "請確認權限"


class TestPlayerControlView:
    @pytest.mark.asyncio
    async def test_apply_playing_state(self) -> None:
        view = PlayerControlView()
        view.apply_state(playing_state())

        assert str(view.play_pause_button.emoji) == "⏸️"
        assert str(view.loop_button.emoji) == "🔁"
        assert view.previous_button.disabled is True
        assert view.next_button.disabled is False
        assert view.shuffle_button.disabled is False

    @pytest.mark.asyncio
    async def test_apply_idle_state(self) -> None:
        view = PlayerControlView()
        view.apply_state(idle_state())

        assert view.play_pause_button.disabled is True
        assert view.shuffle_button.disabled is True
        assert view.clear_button.disabled is True

    @pytest.mark.asyncio
    async def test_button_routes_action(self) -> None:
        callback = AsyncMock()
        view = PlayerControlView(button_callback=callback)
        interaction = MagicMock()
        interaction.response.defer = AsyncMock()
        interaction.data = {"custom_id": PlayerControlView.ACTION_NEXT}

        await view._handle_button(interaction)

        interaction.response.defer.assert_awaited_once()
        callback.assert_awaited_once_with(interaction, "bili_next")


class TestSearchSelectView:
    @pytest.mark.asyncio
    async def test_options_are_capped(self) -> None:
        videos = [make_info(i, title="x" * 200) for i in range(30)]
        view = SearchSelectView(videos, owner_id=1, select_callback=AsyncMock())

        assert len(view.select.options) == 25
        assert len(view.select.options[0].label) == 100

    @pytest.mark.asyncio
    async def test_only_owner_may_choose(self) -> None:
        view = SearchSelectView([make_info(0)], owner_id=1, select_callback=AsyncMock())
        interaction = MagicMock()
        interaction.user.id = 2
        interaction.response.send_message = AsyncMock()

        assert await view.interaction_check(interaction) is False
        interaction.response.send_message.assert_awaited_once()


class TestPlayerInterface:
    @pytest.fixture
    def channel(self):
        message = MagicMock()
        message.edit = AsyncMock(return_value=message)
        channel = MagicMock()
        channel.send = AsyncMock(return_value=message)
        return channel

    @pytest.mark.asyncio
    async def test_first_render_sends_then_edits(self, channel) -> None:
        bus = StateBus()
        interface = PlayerInterface(bus)
        interface.bind(1, channel)

        await interface.on_state(bus.publish(1, playing_state()))
        await interface.on_state(bus.publish(1, playing_state(position=70)))

        channel.send.assert_awaited_once()
        message = interface.context(1).message
        message.edit.assert_awaited_once()
        assert interface.context(1).rendered_seq == 2

    @pytest.mark.asyncio
    async def test_stale_event_is_skipped(self, channel) -> None:
        bus = StateBus()
        interface = PlayerInterface(bus)
        interface.bind(1, channel)

        stale = bus.publish(1, playing_state())
        bus.publish(1, playing_state(position=70))
        await interface.on_state(stale)

        channel.send.assert_not_awaited()
        assert interface.context(1).rendered_seq == 0

    @pytest.mark.asyncio
    async def test_unbound_guild_is_ignored(self, channel) -> None:
        bus = StateBus()
        interface = PlayerInterface(bus)
        await interface.on_state(bus.publish(5, playing_state(guild_id=5)))
        assert interface.context(5) is None

    @pytest.mark.asyncio
    async def test_deleted_message_is_resent(self, channel) -> None:
        bus = StateBus()
        interface = PlayerInterface(bus)
        interface.bind(1, channel)
        await interface.on_state(bus.publish(1, playing_state()))
        interface.context(1).message.edit.side_effect = not_found()

        await interface.on_state(bus.publish(1, playing_state(position=70)))

        assert channel.send.await_count == 2

    @pytest.mark.asyncio
    async def test_detach_strips_view(self, channel) -> None:
        bus = StateBus()
        interface = PlayerInterface(bus)
        interface.bind(1, channel)
        await interface.on_state(bus.publish(1, playing_state()))
        message = interface.context(1).message
        farewell = EmbedBuilder().info("播放結束")

        await interface.detach(1, farewell)

        message.edit.assert_awaited_with(view=None, embed=farewell)
        assert interface.context(1) is None

    @pytest.mark.asyncio
    async def test_start_subscribes_once(self, channel) -> None:
        bus = StateBus()
        interface = PlayerInterface(bus)
        interface.start()
        interface.start()
        interface.bind(1, channel)

        bus.publish(1, playing_state())
        await bus.drain()

        channel.send.assert_awaited_once()
        interface.close()

    @pytest.mark.asyncio
    async def test_render_superseded_mid_send(self, channel) -> None:
        bus = StateBus()
        interface = PlayerInterface(bus)
        interface.bind(1, channel)
        message = channel.send.return_value
        newer = []

        async def send_while_publishing(**kwargs):
            newer.append(bus.publish(1, playing_state(position=70)))
            return message

        channel.send.side_effect = send_while_publishing
        await interface.on_state(bus.publish(1, playing_state()))

        assert interface.context(1).rendered_seq == 0
        assert interface.context(1).message is message

        await interface.on_state(newer[0])

        channel.send.assert_awaited_once()
        message.edit.assert_awaited_once()
        assert interface.context(1).rendered_seq == newer[0].seq
