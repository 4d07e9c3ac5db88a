"""Tests for nvidia-smi based GPU detection."""

import subprocess
from types import SimpleNamespace
from unittest.mock import patch

from planner.models import GPUBackend
from planner.sources.gpu_detect import MIB, QUERY_FIELDS, detect_gpus, parse_nvidia_smi

TWO_GPUS = (
    "0, NVIDIA GeForce RTX 4090, 24564, 23012, 550.54.14, 8.9\n"
    "1, NVIDIA GeForce RTX 3090, 24576, 20000, 550.54.14, 8.6\n"
)


class TestParseNvidiaSmi:
    def test_two_gpus(self):
        gpus = parse_nvidia_smi(TWO_GPUS)
        assert [g.id for g in gpus] == ["0", "1"]
        assert gpus[0].name == "NVIDIA GeForce RTX 4090"
        assert gpus[0].total_memory == 24564 * MIB
        assert gpus[0].free_memory == 23012 * MIB
        assert gpus[0].driver_major == 550
        assert gpus[0].driver_minor == 54
        assert gpus[0].compute == "8.9"
        assert gpus[0].backend == GPUBackend.CUDA

    def test_without_compute_cap(self):
        gpus = parse_nvidia_smi("0, Tesla T4, 15360, 15000, 470.82\n", QUERY_FIELDS[1])
        assert gpus[0].compute is None
        assert gpus[0].driver_major == 470

    def test_not_available_values(self):
        gpus = parse_nvidia_smi("0, GRID A100, [N/A], [N/A], 535.1, [N/A]\n")
        assert gpus[0].total_memory == 0
        assert gpus[0].free_memory == 0
        assert gpus[0].compute is None

    def test_malformed_line_skipped(self):
        assert parse_nvidia_smi("No devices were found\n") == []

    def test_empty(self):
        assert parse_nvidia_smi("") == []


class TestDetectGpus:
    def test_no_nvidia_smi(self):
        with patch("planner.sources.gpu_detect.shutil.which", return_value=None):
            assert detect_gpus() == []

    def test_success(self):
        result = SimpleNamespace(returncode=0, stdout=TWO_GPUS, stderr="")
        with (
            patch("planner.sources.gpu_detect.shutil.which", return_value="/usr/bin/nvidia-smi"),
            patch("planner.sources.gpu_detect.subprocess.run", return_value=result) as mock_run,
        ):
            gpus = detect_gpus()
        assert len(gpus) == 2
        cmd = mock_run.call_args.args[0]
        assert cmd[0] == "/usr/bin/nvidia-smi"
        assert "--format=csv,noheader,nounits" in cmd

    def test_retries_without_compute_cap(self):
        results = [
            SimpleNamespace(returncode=2, stdout="", stderr='Field "compute_cap" is not a valid field'),
            SimpleNamespace(returncode=0, stdout="0, Tesla T4, 15360, 15000, 470.82\n", stderr=""),
        ]
        with (
            patch("planner.sources.gpu_detect.shutil.which", return_value="nvidia-smi"),
            patch("planner.sources.gpu_detect.subprocess.run", side_effect=results) as mock_run,
        ):
            gpus = detect_gpus()
        assert mock_run.call_count == 2
        assert gpus[0].name == "Tesla T4"

    def test_timeout_means_no_gpus(self):
        with (
            patch("planner.sources.gpu_detect.shutil.which", return_value="nvidia-smi"),
            patch(
                "planner.sources.gpu_detect.subprocess.run",
                side_effect=subprocess.TimeoutExpired("nvidia-smi", 5),
            ),
        ):
            assert detect_gpus() == []
