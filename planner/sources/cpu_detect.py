"""Host CPU inventory: physical packages, performance and efficiency cores."""

import logging
import os
import platform
import subprocess
from pathlib import Path

from planner.models import CPUDescriptor

logger = logging.getLogger(__name__)

CPUINFO_PATH = Path("/proc/cpuinfo")
# Lists the logical CPUs that are Intel hybrid E-cores ("Atom" cores)
ATOM_CPUS_PATH = Path("/sys/devices/cpu_atom/cpus")
SYSCTL_TIMEOUT = 5  # seconds


def parse_cpu_list(text: str) -> set[int]:
    """Parse a kernel cpulist such as ``"0-3,8,10-11"``."""
    cpus: set[int] = set()
    for part in text.strip().split(","):
        part = part.strip()
        if not part:
            continue
        if "-" in part:
            start, end = part.split("-", 1)
            cpus.update(range(int(start), int(end) + 1))
        else:
            cpus.add(int(part))
    return cpus


def parse_cpuinfo(text: str, efficiency_cpus: set[int] | None = None) -> list[CPUDescriptor]:
    """Group ``/proc/cpuinfo`` processors into one descriptor per physical package.

    Cores are counted as unique ``core id`` values within a package; logical
    CPUs listed in *efficiency_cpus* mark their core as an efficiency core.
    """
    efficiency_cpus = efficiency_cpus or set()
    packages: dict[str, dict] = {}

    for block in text.strip().split("\n\n"):
        fields: dict[str, str] = {}
        for line in block.splitlines():
            key, sep, value = line.partition(":")
            if sep:
                fields[key.strip()] = value.strip()
        if "processor" not in fields:
            continue

        processor = int(fields["processor"])
        package = packages.setdefault(
            fields.get("physical id", "0"),
            {"cores": set(), "efficiency": set(), "threads": 0, "model": None, "vendor": None},
        )
        core_id = fields.get("core id", str(processor))
        package["cores"].add(core_id)
        package["threads"] += 1
        if processor in efficiency_cpus:
            package["efficiency"].add(core_id)
        package["model"] = package["model"] or fields.get("model name")
        package["vendor"] = package["vendor"] or fields.get("vendor_id")

    return [
        CPUDescriptor(
            core_count=len(p["cores"]),
            efficiency_core_count=len(p["efficiency"]),
            thread_count=p["threads"],
            model_name=p["model"],
            vendor_id=p["vendor"],
        )
        for _, p in sorted(packages.items(), key=lambda item: item[0])
    ]


def _detect_linux() -> list[CPUDescriptor]:
    efficiency_cpus: set[int] = set()
    if ATOM_CPUS_PATH.exists():
        efficiency_cpus = parse_cpu_list(ATOM_CPUS_PATH.read_text())
    return parse_cpuinfo(CPUINFO_PATH.read_text(), efficiency_cpus)


def _sysctl(name: str) -> str | None:
    result = subprocess.run(
        ["sysctl", "-n", name], capture_output=True, text=True, timeout=SYSCTL_TIMEOUT
    )
    if result.returncode != 0:
        return None
    return result.stdout.strip() or None


def _detect_macos() -> list[CPUDescriptor]:
    # Apple silicon: perflevel0 = performance cores, perflevel1 = efficiency cores
    performance = _sysctl("hw.perflevel0.physicalcpu")
    efficiency = _sysctl("hw.perflevel1.physicalcpu")
    logical = _sysctl("hw.logicalcpu")
    brand = _sysctl("machdep.cpu.brand_string")

    if performance is not None:
        p_cores, e_cores = int(performance), int(efficiency or 0)
    else:
        p_cores, e_cores = int(_sysctl("hw.physicalcpu") or os.cpu_count() or 1), 0

    return [
        CPUDescriptor(
            core_count=p_cores + e_cores,
            efficiency_core_count=e_cores,
            thread_count=int(logical) if logical else None,
            model_name=brand,
            vendor_id="Apple" if brand and brand.startswith("Apple") else None,
        )
    ]


def _detect_generic() -> list[CPUDescriptor]:
    count = os.cpu_count() or 1
    return [CPUDescriptor(core_count=count, thread_count=count)]


def detect_cpus() -> list[CPUDescriptor]:
    """Best-effort CPU inventory of this machine; never empty."""
    system = platform.system()
    try:
        if system == "Linux":
            cpus = _detect_linux()
        elif system == "Darwin":
            cpus = _detect_macos()
        else:
            cpus = []
    except (OSError, ValueError, subprocess.SubprocessError) as e:
        logger.warning("CPU topology detection failed on %s: %s", system, e)
        cpus = []

    if not cpus:
        cpus = _detect_generic()
    for cpu in cpus:
        logger.info(
            "CPU %s: %d cores (%d efficiency), %s threads",
            cpu.model_name or "unknown",
            cpu.core_count,
            cpu.efficiency_core_count,
            cpu.thread_count,
        )
    return cpus
