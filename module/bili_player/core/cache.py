"""
有時效的記憶體快取

用於保存 yt-dlp 取得的影片資訊，避免短時間內重複呼叫：
- 每筆資料超過 ttl 秒即失效
- 超過容量時淘汰最舊的資料
"""

import time
from collections import OrderedDict
from typing import Any, Callable, Hashable, Optional
from loguru import logger


class TTLCache:
    """
    使用方式：
        cache = TTLCache(ttl=1800, max_size=100)
        cache.set(url, info)
        info = cache.get(url)   # 過期或不存在回傳 None
    """

    def __init__(self, ttl: float, max_size: int, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self.max_size = max_size
        self._clock = clock
        self._entries: "OrderedDict[Hashable, tuple[float, Any]]" = OrderedDict()

    def get(self, key: Hashable) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, value = entry
        if self._clock() - stored_at >= self.ttl:
            del self._entries[key]
            return None
        return value

    def set(self, key: Hashable, value: Any) -> None:
        self._entries.pop(key, None)
        self._entries[key] = (self._clock(), value)
        self.prune()

    def prune(self) -> int:
        """移除過期與超出容量的資料，返回移除數量"""
        now = self._clock()
        expired = [k for k, (stored_at, _) in self._entries.items() if now - stored_at >= self.ttl]
        for key in expired:
            del self._entries[key]

        removed = len(expired)
        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)
            removed += 1

        if removed:
            logger.debug(f"[TTLCache] 清除 {removed} 筆，剩餘 {len(self._entries)} 筆")
        return removed

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        return len(self._entries)
