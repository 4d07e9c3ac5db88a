"""Tests for the CLI.  Hardware probes are patched; the model is a local file."""

import argparse
import json
from unittest.mock import patch

import httpx
import pytest

from planner.main import main, parse_gpu_memory
from tests.test_decoder import LLAMA_GGUF
from tests.test_threads import HYBRID

GIB = 1024**3


@pytest.fixture
def model_path(tmp_path):
    path = tmp_path / "llama-3-8b.Q4_K_M.gguf"
    path.write_bytes(LLAMA_GGUF + b"\x00" * 4096)
    return path


@pytest.fixture(autouse=True)
def fake_hardware():
    with (
        patch("planner.main.detect_cpus", return_value=[HYBRID]),
        patch("planner.main.detect_gpus", return_value=[]) as mock_gpus,
    ):
        yield mock_gpus


class TestParseGpuMemory:
    def test_list(self):
        gpus = parse_gpu_memory("24576,8192")
        assert [g.free_memory for g in gpus] == [24 * GIB, 8 * GIB]
        assert [g.id for g in gpus] == ["0", "1"]

    def test_invalid(self):
        with pytest.raises(argparse.ArgumentTypeError):
            parse_gpu_memory("lots")
        with pytest.raises(argparse.ArgumentTypeError):
            parse_gpu_memory("0")


class TestMain:
    def test_prints_plan(self, model_path, capsys):
        main([str(model_path), "--gpu-memory", "81920", "--ctx-size", "8192"])
        plan = json.loads(capsys.readouterr().out)
        assert plan["options"]["threads"] == 8
        assert plan["options"]["gpu_layers"] == 32
        assert plan["options"]["context_size"] == 8192
        assert plan["model"]["name"] == "llama-3-8b.Q4_K_M"

    def test_detects_gpus_by_default(self, model_path, capsys, fake_hardware):
        main([str(model_path)])
        fake_hardware.assert_called_once()
        plan = json.loads(capsys.readouterr().out)
        assert plan["options"]["gpu_layers"] == 0

    def test_no_detect(self, model_path, capsys, fake_hardware):
        main([str(model_path), "--no-detect"])
        fake_hardware.assert_not_called()

    def test_export(self, model_path, tmp_path, capsys):
        main([str(model_path), "--export", str(tmp_path / "plans")])
        assert (tmp_path / "plans" / "plan.json").exists()

    @pytest.mark.parametrize("flag", ["--ctx-size", "--parallel", "--batch-size"])
    def test_invalid_option_exits_1(self, model_path, flag):
        with pytest.raises(SystemExit) as exc_info:
            main([str(model_path), flag, "0"])
        assert exc_info.value.code == 1

    def test_corrupt_model_exits_1(self, tmp_path):
        path = tmp_path / "bad.gguf"
        path.write_bytes(b"NOPE" + LLAMA_GGUF[4:])
        with pytest.raises(SystemExit) as exc_info:
            main([str(path)])
        assert exc_info.value.code == 1

    def test_http_error_exits_1_without_retry(self):
        request = httpx.Request("HEAD", "https://huggingface.co/a/b/resolve/main/m.gguf")
        error = httpx.HTTPStatusError("404", request=request, response=httpx.Response(404))
        with (
            patch("planner.main.load_metadata", side_effect=error) as mock_load,
            pytest.raises(SystemExit) as exc_info,
        ):
            main(["https://huggingface.co/a/b/resolve/main/m.gguf"])
        assert exc_info.value.code == 1
        assert mock_load.call_count == 1

    def test_transport_error_retried(self, model_path, capsys):
        with (
            patch("planner.main.time.sleep") as mock_sleep,
            patch(
                "planner.main.load_metadata",
                side_effect=httpx.ConnectError("refused"),
            ) as mock_load,
            pytest.raises(SystemExit),
        ):
            main(["https://huggingface.co/a/b/resolve/main/m.gguf"])
        assert mock_load.call_count == 3
        assert mock_sleep.call_count == 2
