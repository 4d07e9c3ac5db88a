"""Host GPU inventory via ``nvidia-smi``.

Machines without an NVIDIA driver simply report no GPUs; the planner then
plans a CPU-only configuration.
"""

import logging
import shutil
import subprocess

from planner.models import GPUBackend, GPUDescriptor

logger = logging.getLogger(__name__)

MIB = 1024 * 1024
NVIDIA_SMI_TIMEOUT = 5  # seconds

# Older drivers reject compute_cap, so retry without it
QUERY_FIELDS = (
    ("index", "name", "memory.total", "memory.free", "driver_version", "compute_cap"),
    ("index", "name", "memory.total", "memory.free", "driver_version"),
)


def _int_or_zero(value: str) -> int:
    try:
        return int(float(value))
    except ValueError:
        return 0  # "[N/A]" on some virtualized GPUs


def parse_nvidia_smi(output: str, fields: tuple[str, ...] = QUERY_FIELDS[0]) -> list[GPUDescriptor]:
    """Parse ``--format=csv,noheader,nounits`` output (memory in MiB)."""
    gpus: list[GPUDescriptor] = []
    for line in output.strip().splitlines():
        values = [v.strip() for v in line.split(",")]
        if len(values) != len(fields):
            logger.debug("Skipping unexpected nvidia-smi line: %r", line)
            continue
        row = dict(zip(fields, values))

        total = _int_or_zero(row["memory.total"]) * MIB
        free = min(_int_or_zero(row["memory.free"]) * MIB, total)
        driver = row["driver_version"].split(".")
        compute = row.get("compute_cap")

        gpus.append(
            GPUDescriptor(
                id=row["index"],
                name=row["name"],
                backend=GPUBackend.CUDA,
                free_memory=free,
                total_memory=total,
                driver_major=_int_or_zero(driver[0]),
                driver_minor=_int_or_zero(driver[1]) if len(driver) > 1 else 0,
                compute=compute if compute and compute != "[N/A]" else None,
            )
        )
    return gpus


def detect_gpus() -> list[GPUDescriptor]:
    """NVIDIA GPUs on this machine with their current free memory."""
    executable = shutil.which("nvidia-smi")
    if executable is None:
        logger.info("nvidia-smi not found, assuming no GPUs")
        return []

    for fields in QUERY_FIELDS:
        try:
            result = subprocess.run(
                [executable, f"--query-gpu={','.join(fields)}", "--format=csv,noheader,nounits"],
                capture_output=True,
                text=True,
                timeout=NVIDIA_SMI_TIMEOUT,
            )
        except (OSError, subprocess.SubprocessError) as e:
            logger.warning("nvidia-smi failed: %s", e)
            return []
        if result.returncode == 0:
            gpus = parse_nvidia_smi(result.stdout, fields)
            for gpu in gpus:
                logger.info(
                    "GPU %s (%s): %.1f/%.1f GiB free",
                    gpu.id,
                    gpu.name,
                    gpu.free_memory / 1024**3,
                    gpu.total_memory / 1024**3,
                )
            return gpus
        logger.debug("nvidia-smi query %s failed: %s", fields, result.stderr.strip())

    return []
