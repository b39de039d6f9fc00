"""Tests for error suggestions and the FFmpeg process factory."""

import subprocess
from unittest.mock import patch

import pytest

from module.bili_player.ffmpeg.transcoder import FFmpegTranscoder
from module.bili_player.utils.errors import (
    DEFAULT_SUGGESTION,
    PipelineError,
    TranscoderMissingError,
    suggest_fix,
)


class TestSuggestFix:
    @pytest.mark.parametrize("message, expected", [
        ("FFmpeg not installed (spawn ffmpeg ENOENT)", "請確認伺服器已安裝 FFmpeg 與 yt-dlp，並已加入 PATH"),
        ("Failed to create audio resource: boom", "音訊資源建立失敗，請確認 FFmpeg 版本或稍後再試"),
        ("SSL: CERTIFICATE_VERIFY_FAILED", "SSL 憑證驗證失敗，請檢查系統時間與憑證設定"),
        ("HTTP Error 404: Not Found", "影片可能已被刪除或設為私人，請換一個連結"),
        ("Voice connection timed out", "網路連線逾時，請稍後再試"),
        ("Voice connection dropped", "請確認機器人有加入並在語音頻道說話的權限"),
        ("something odd", DEFAULT_SUGGESTION),
        ("", DEFAULT_SUGGESTION),
    ])
    def test_rules_in_order(self, message, expected) -> None:
        assert suggest_fix(message) == expected


class TestTranscoder:
    def test_args_emit_raw_pcm(self) -> None:
        args = FFmpegTranscoder.build_args("https://upos.example/a.m4s")
        assert args[args.index("-i") + 1] == "https://upos.example/a.m4s"
        assert args[args.index("-f") + 1] == "s16le"
        assert args[args.index("-ar") + 1] == "48000"
        assert args[args.index("-ac") + 1] == "2"
        assert args[-1] == "pipe:1"

    def test_empty_url(self) -> None:
        with pytest.raises(PipelineError):
            FFmpegTranscoder().spawn("")

    def test_missing_binary(self) -> None:
        transcoder = FFmpegTranscoder("ffmpeg-does-not-exist")
        with patch.object(subprocess, "Popen", side_effect=FileNotFoundError()):
            with pytest.raises(TranscoderMissingError) as excinfo:
                transcoder.spawn("https://upos.example/a.m4s")
        assert excinfo.value.user_message == "伺服器未安裝 FFmpeg"
        assert "ENOENT" in excinfo.value.message

    def test_locate_without_binary(self) -> None:
        with patch("shutil.which", return_value=None):
            assert FFmpegTranscoder("ffmpeg-does-not-exist").locate() is None
