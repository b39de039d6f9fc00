"""
播放器裝飾器

- publishes_state: 操作成功後自動發布播放器狀態
- log_operation: 記錄操作的開始與結束
"""

from functools import wraps
from typing import Callable, ParamSpec, TypeVar
from loguru import logger

P = ParamSpec('P')
T = TypeVar('T')


def publishes_state(func: Callable[P, T]) -> Callable[P, T]:
    """
    裝飾器：操作成功（回傳值不是 False）後呼叫 self._publish_state()

    使用方式：
        @publishes_state
        async def pause(self) -> bool:
            ...
    """
    @wraps(func)
    async def wrapper(self, *args, **kwargs):
        result = await func(self, *args, **kwargs)
        if result is not False:
            try:
                self._publish_state()
            except Exception as e:
                logger.warning(f"[{func.__name__}] 發布狀態失敗: {e}")
        return result

    return wrapper


def log_operation(operation_name: str = None):
    """
    裝飾器：記錄操作的開始和結束

    使用方式：
        @log_operation("停止播放")
        async def stop(self):
            ...
    """
    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        name = operation_name or func.__name__

        @wraps(func)
        async def wrapper(*args, **kwargs):
            logger.debug(f"開始: {name}")
            try:
                result = await func(*args, **kwargs)
                logger.debug(f"完成: {name}")
                return result
            except Exception as e:
                logger.error(f"失敗: {name} - {e}")
                raise

        return wrapper
    return decorator
