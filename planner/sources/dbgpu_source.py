"""Catalog GPUs sourced from dbgpu (TechPowerUp database).

Lets the planner answer "what if I had an X" without the hardware: a catalog
entry becomes a ``GPUDescriptor`` whose memory is entirely free.
"""

import logging

from dbgpu import GPUDatabase

from planner.models import GPUBackend, GPUDescriptor

logger = logging.getLogger(__name__)

GIB = 1024**3

# Short names → dbgpu specification key (slug)
GPU_ALIASES: dict[str, str] = {
    "A10": "a10-pcie",
    "A100": "a100-pcie-40gb",
    "A100_80G": "a100-sxm4-80gb",
    "H100": "h100-sxm5-80gb",
    "H200": "h200-sxm-141gb",
    "L4": "l4",
    "L40S": "l40s",
    "RTX3090": "geforce-rtx-3090",
    "RTX4090": "geforce-rtx-4090",
    "RTX5090": "geforce-rtx-5090",
    "RTX6000Ada": "rtx-6000-ada-generation",
}

# dbgpu reports per-die memory for dual-die packages
MULTI_DIE_CHIPS: dict[str, int] = {
    "GB100": 2,  # B200
    "GB110": 2,  # B300
}

# Manufacturer → backend the runtime would use
VENDOR_BACKENDS: dict[str, GPUBackend] = {
    "NVIDIA": GPUBackend.CUDA,
    "AMD": GPUBackend.ROCM,
    "Apple": GPUBackend.METAL,
    "Intel": GPUBackend.VULKAN,
}


def catalog_gpu(name: str, index: int = 0, db: GPUDatabase | None = None) -> GPUDescriptor:
    """Build a fully-free ``GPUDescriptor`` for a catalog GPU.

    *name* is either a short alias (``RTX4090``) or a dbgpu slug
    (``geforce-rtx-4090``).

    Raises KeyError if the GPU is not in dbgpu — no silent fallbacks.
    """
    db = db or GPUDatabase.default()
    specs_map = db.specifications
    key = GPU_ALIASES.get(name, name)
    if key not in specs_map:
        raise KeyError(
            f"GPU '{name}' not found in dbgpu (key='{key}'). "
            f"Use a TechPowerUp slug such as 'geforce-rtx-4090'."
        )

    gpu = specs_map[key]
    mem_gb = (gpu.memory_size_gb or 0) * MULTI_DIE_CHIPS.get(gpu.gpu_name, 1)
    memory = int(mem_gb * GIB)
    manufacturer = getattr(gpu, "manufacturer", None)
    vendor = str(getattr(manufacturer, "value", manufacturer) or "")
    backend = VENDOR_BACKENDS.get(vendor, GPUBackend.VULKAN)

    logger.debug("Catalog GPU %s: %.1f GB, %s", key, mem_gb, backend.value)
    return GPUDescriptor(
        id=f"{key}:{index}",
        name=getattr(gpu, "name", None) or key,
        backend=backend,
        free_memory=memory,
        total_memory=memory,
        driver_major=12 if backend == GPUBackend.CUDA else 0,
        compute=gpu.architecture,
    )


def catalog_gpus(names: list[str]) -> list[GPUDescriptor]:
    """One descriptor per entry of *names* (repeat a name for multiple cards)."""
    if not names:
        return []
    db = GPUDatabase.default()
    gpus = [catalog_gpu(name, index, db) for index, name in enumerate(names)]
    logger.info("Planning against %d catalog GPU(s)", len(gpus))
    return gpus
