"""
狀態通知匯流排

播放器每次狀態改變都呼叫 publish()；介面層在啟動時 subscribe() 一次。
每個伺服器維護遞增的序號，渲染端完成時用 is_current() 確認自己沒有被更新的事件取代。
"""

import asyncio
import inspect
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Set
from loguru import logger

from .state import PlayerState

StateHandler = Callable[["StateEvent"], Any]


@dataclass(frozen=True)
class StateEvent:
    guild_id: int
    state: PlayerState
    seq: int


class StateBus:
    """
    使用方式：
        bus = StateBus()
        unsubscribe = bus.subscribe(renderer.on_state)
        bus.publish(guild_id, player.get_state())
    """

    def __init__(self):
        self._handlers: List[StateHandler] = []
        self._seq: Dict[int, int] = {}
        self._pending: Set[asyncio.Task] = set()

    def subscribe(self, handler: StateHandler) -> Callable[[], None]:
        """註冊處理器，返回取消註冊的函式"""
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def latest_seq(self, guild_id: int) -> int:
        return self._seq.get(guild_id, 0)

    def is_current(self, guild_id: int, seq: int) -> bool:
        """事件是否仍是該伺服器最新的一筆"""
        return self._seq.get(guild_id, 0) == seq

    def publish(self, guild_id: int, state: PlayerState) -> StateEvent:
        """
        發布狀態，協程處理器以背景任務執行

        Returns:
            帶有序號的事件
        """
        seq = self._seq.get(guild_id, 0) + 1
        self._seq[guild_id] = seq
        event = StateEvent(guild_id=guild_id, state=state, seq=seq)

        for handler in list(self._handlers):
            try:
                result = handler(event)
            except Exception as e:
                logger.exception(f"[StateBus] 狀態處理器執行失敗: {e}")
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(self._guard(result))
                self._pending.add(task)
                task.add_done_callback(self._pending.discard)

        return event

    async def _guard(self, awaitable) -> None:
        try:
            await awaitable
        except Exception as e:
            logger.exception(f"[StateBus] 狀態處理器執行失敗: {e}")

    async def drain(self) -> None:
        """等待所有進行中的處理器"""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
