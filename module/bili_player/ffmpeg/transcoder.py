"""
FFmpeg 轉碼器

把 B站音訊串流 URL 轉成 48kHz / s16le / 雙聲道的原始 PCM，從 stdout 輸出。

尋找順序：
1. 環境變數 FFMPEG_PATH 指定的路徑
2. 系統 PATH 中的 ffmpeg
"""

import os
import shutil
import subprocess
from typing import List, Optional
from loguru import logger

from ..constants import (
    BILIBILI_REFERER,
    CHANNELS,
    FFMPEG_PATH,
    SAMPLE_RATE,
    USER_AGENT,
)
from ..utils.errors import PipelineError, TranscoderMissingError


class FFmpegTranscoder:
    """
    FFmpeg 程序工廠

    使用方式：
        transcoder = FFmpegTranscoder()
        process = transcoder.spawn(stream_url)
        chunk = process.stdout.read(3840)
    """

    def __init__(self, executable: str = FFMPEG_PATH):
        self._executable = executable
        self._resolved: Optional[str] = None

    @property
    def executable(self) -> str:
        return self._resolved or self._executable

    def locate(self) -> Optional[str]:
        """
        確認 ffmpeg 可用，返回可執行路徑

        Returns:
            ffmpeg 路徑，找不到返回 None
        """
        if self._resolved:
            return self._resolved

        if os.path.isfile(self._executable) and os.access(self._executable, os.X_OK):
            candidate = self._executable
        else:
            candidate = shutil.which(self._executable)

        if not candidate:
            logger.error(f"[FFmpegTranscoder] 找不到 FFmpeg: {self._executable}")
            return None

        try:
            result = subprocess.run(
                [candidate, "-version"], capture_output=True, text=True, timeout=5
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.error(f"[FFmpegTranscoder] FFmpeg 無法執行: {e}")
            return None

        if "ffmpeg version" not in result.stdout:
            logger.error(f"[FFmpegTranscoder] {candidate} 不是有效的 FFmpeg")
            return None

        logger.info(f"[FFmpegTranscoder] 使用 FFmpeg: {candidate}")
        self._resolved = candidate
        return candidate

    @staticmethod
    def build_args(stream_url: str) -> List[str]:
        """組出 FFmpeg 參數（不含執行檔本身）"""
        return [
            # 輸入：模擬瀏覽器並開啟斷線重連
            "-user_agent", USER_AGENT,
            "-referer", BILIBILI_REFERER,
            "-reconnect", "1",
            "-reconnect_streamed", "1",
            "-reconnect_delay_max", "5",
            "-reconnect_at_eof", "1",
            "-rw_timeout", "60000000",
            "-timeout", "60000000",
            "-headers", "Connection: keep-alive\r\n",
            "-analyzeduration", "10000000",
            "-probesize", "50000000",
            "-fflags", "+genpts+discardcorrupt",
            "-i", stream_url,
            # 輸出：原始 PCM
            "-f", "s16le",
            "-ar", str(SAMPLE_RATE),
            "-ac", str(CHANNELS),
            "-vn",
            "-loglevel", "warning",
            "-bufsize", "2048k",
            "pipe:1",
        ]

    def spawn(self, stream_url: str) -> subprocess.Popen:
        """
        啟動轉碼程序

        Raises:
            TranscoderMissingError: 找不到 ffmpeg
            PipelineError: 其他啟動失敗
        """
        if not stream_url:
            raise PipelineError("Empty audio stream URL")

        args = [self.executable, *self.build_args(stream_url)]
        try:
            process = subprocess.Popen(
                args,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise TranscoderMissingError(self.executable) from e
        except OSError as e:
            raise PipelineError(f"Failed to spawn FFmpeg: {e}") from e

        logger.debug(f"[FFmpegTranscoder] 已啟動 FFmpeg (pid={process.pid})")
        return process
