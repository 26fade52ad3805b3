"""Tests for bsdvm.utils module."""

from __future__ import annotations

import lzma
from unittest.mock import MagicMock, patch

import pytest
import requests

from bsdvm.exceptions import DownloadFailed, ManagerError
from bsdvm.utils import (
    decompress_xz,
    download_file,
    get_env,
    grow_image,
    log,
    parse_size_to_bytes,
    prompt_yes_no,
    sanitize_device_id,
    validate_disk_size,
    validate_memory,
)


class TestLog:
    def test_info_level(self, capsys):
        log("INFO", "test message")
        captured = capsys.readouterr()
        assert "[INFO]" in captured.out
        assert "test message" in captured.out

    def test_debug_suppressed_by_default(self, capsys):
        log("DEBUG", "should not appear")
        captured = capsys.readouterr()
        assert captured.out == ""


class TestGetEnv:
    def test_returns_value(self, monkeypatch):
        monkeypatch.setenv("TEST_VAR", "hello")
        assert get_env("TEST_VAR") == "hello"

    def test_returns_default(self, monkeypatch):
        monkeypatch.delenv("TEST_VAR", raising=False)
        assert get_env("TEST_VAR", "fallback") == "fallback"


class TestSizes:
    @pytest.mark.parametrize("raw", ["45G", "512m", "1024", "2T"])
    def test_valid_disk_sizes(self, raw):
        assert validate_disk_size(raw) == raw

    def test_invalid_disk_size(self):
        with pytest.raises(ManagerError):
            validate_disk_size("45GB")

    def test_invalid_memory(self):
        with pytest.raises(ManagerError):
            validate_memory("-1g")

    def test_parse_size_to_bytes(self):
        assert parse_size_to_bytes("45G") == 45 * 1024**3
        assert parse_size_to_bytes("512k") == 512 * 1024
        assert parse_size_to_bytes("100") == 100


class TestSanitizeDeviceId:
    def test_replaces_unsafe_characters(self):
        assert sanitize_device_id("Kingston DT/3.0") == "Kingston-DT-3.0"

    def test_leading_digit(self):
        assert sanitize_device_id("0951") == "dev-0951"

    def test_empty(self):
        assert sanitize_device_id("///") == "dev"


class TestPromptYesNo:
    @patch("bsdvm.utils.has_controlling_tty", return_value=True)
    def test_yes(self, mock_tty):
        assert prompt_yes_no("Rebuild?", input_func=lambda prompt: "Y") is True

    @patch("bsdvm.utils.has_controlling_tty", return_value=True)
    def test_no(self, mock_tty):
        assert prompt_yes_no("Rebuild?", input_func=lambda prompt: "n") is False

    @patch("bsdvm.utils.has_controlling_tty", return_value=False)
    def test_no_tty_defaults_to_no(self, mock_tty):
        asked = MagicMock()
        assert prompt_yes_no("Rebuild?", input_func=asked) is False
        asked.assert_not_called()


def _response(status=200, chunks=(b"abc", b"def"), length=None):
    response = MagicMock()
    response.status_code = status
    response.reason = "Not Found" if status == 404 else "OK"
    response.headers = {"Content-Length": str(length)} if length is not None else {}
    response.iter_content.return_value = iter(chunks)
    return response


class TestDownloadFile:
    def test_writes_destination(self, tmp_path):
        session = MagicMock()
        session.get.return_value = _response(length=6)
        dest = tmp_path / "out.bin"
        download_file("https://example.org/x", dest, session=session, show_progress=False)
        assert dest.read_bytes() == b"abcdef"
        assert list(tmp_path.glob(".download-*")) == []

    def test_http_error(self, tmp_path):
        session = MagicMock()
        session.get.return_value = _response(status=404)
        with pytest.raises(DownloadFailed, match="404"):
            download_file("https://example.org/x", tmp_path / "out.bin", session=session, show_progress=False)
        assert not (tmp_path / "out.bin").exists()

    def test_truncated_transfer(self, tmp_path):
        session = MagicMock()
        session.get.return_value = _response(length=100)
        with pytest.raises(DownloadFailed, match="Incomplete"):
            download_file("https://example.org/x", tmp_path / "out.bin", session=session, show_progress=False)
        assert list(tmp_path.iterdir()) == []

    def test_connection_reset_mid_stream(self, tmp_path):
        session = MagicMock()
        response = _response()
        response.iter_content.side_effect = requests.ConnectionError("reset")
        session.get.return_value = response
        with pytest.raises(DownloadFailed, match="reset"):
            download_file("https://example.org/x", tmp_path / "out.bin", session=session, show_progress=False)
        assert list(tmp_path.iterdir()) == []

    def test_timeout_passed(self, tmp_path):
        session = MagicMock()
        session.get.return_value = _response()
        download_file("https://example.org/x", tmp_path / "o", session=session, timeout=7, show_progress=False)
        session.get.assert_called_once_with("https://example.org/x", stream=True, timeout=7)


class TestDecompressXz:
    def test_round_trip(self, tmp_path):
        src = tmp_path / "a.xz"
        src.write_bytes(lzma.compress(b"payload"))
        dest = decompress_xz(src, tmp_path / "a")
        assert dest.read_bytes() == b"payload"
        assert src.exists()

    def test_corrupt_input(self, tmp_path):
        src = tmp_path / "a.xz"
        src.write_bytes(b"not xz at all")
        with pytest.raises(ManagerError, match="Failed to decompress"):
            decompress_xz(src, tmp_path / "a")
        assert not (tmp_path / "a").exists()


class TestGrowImage:
    @patch("bsdvm.utils.run")
    @patch("bsdvm.utils.qemu_img_virtual_size", return_value=5 * 1024**3)
    def test_grows_smaller_image(self, mock_size, mock_run, tmp_path):
        assert grow_image(tmp_path / "img.qcow2", "45G") is True
        mock_run.assert_called_once_with(["qemu-img", "resize", str(tmp_path / "img.qcow2"), "45G"])

    @patch("bsdvm.utils.run")
    @patch("bsdvm.utils.qemu_img_virtual_size", return_value=50 * 1024**3)
    def test_never_shrinks(self, mock_size, mock_run, tmp_path):
        assert grow_image(tmp_path / "img.qcow2", "45G") is False
        mock_run.assert_not_called()
