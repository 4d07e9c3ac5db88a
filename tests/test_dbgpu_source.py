"""Tests for catalog GPUs.  The dbgpu database is replaced with a small fake."""

from types import SimpleNamespace
from unittest.mock import patch

import pytest

from planner.models import GPUBackend
from planner.sources.dbgpu_source import GIB, catalog_gpu, catalog_gpus


def _spec(name, memory_gb, gpu_name, manufacturer="NVIDIA", architecture="Ada Lovelace"):
    return SimpleNamespace(
        name=name,
        memory_size_gb=memory_gb,
        gpu_name=gpu_name,
        manufacturer=manufacturer,
        architecture=architecture,
    )


FAKE_DB = SimpleNamespace(
    specifications={
        "geforce-rtx-4090": _spec("GeForce RTX 4090", 24, "AD102"),
        "b200": _spec("B200", 96, "GB100", architecture="Blackwell"),
        "radeon-rx-7900-xtx": _spec("Radeon RX 7900 XTX", 24, "Navi 31", "AMD", "RDNA 3.0"),
    }
)


class TestCatalogGpu:
    def test_alias(self):
        gpu = catalog_gpu("RTX4090", db=FAKE_DB)
        assert gpu.name == "GeForce RTX 4090"
        assert gpu.total_memory == 24 * GIB
        assert gpu.free_memory == gpu.total_memory
        assert gpu.backend == GPUBackend.CUDA
        assert gpu.driver_major >= 7

    def test_slug(self):
        gpu = catalog_gpu("radeon-rx-7900-xtx", db=FAKE_DB)
        assert gpu.backend == GPUBackend.ROCM

    def test_dual_die_memory(self):
        gpu = catalog_gpu("b200", db=FAKE_DB)
        assert gpu.total_memory == 192 * GIB

    def test_enum_manufacturer(self):
        spec = _spec("GeForce RTX 4090", 24, "AD102", manufacturer=SimpleNamespace(value="NVIDIA"))
        db = SimpleNamespace(specifications={"geforce-rtx-4090": spec})
        assert catalog_gpu("RTX4090", db=db).backend == GPUBackend.CUDA

    def test_unknown_gpu_raises(self):
        with pytest.raises(KeyError, match="not found in dbgpu"):
            catalog_gpu("voodoo-2", db=FAKE_DB)


class TestCatalogGpus:
    def test_repeated_names_get_distinct_ids(self):
        with patch("planner.sources.dbgpu_source.GPUDatabase.default", return_value=FAKE_DB):
            gpus = catalog_gpus(["RTX4090", "RTX4090"])
        assert [g.id for g in gpus] == ["geforce-rtx-4090:0", "geforce-rtx-4090:1"]

    def test_empty_does_not_load_database(self):
        with patch("planner.sources.dbgpu_source.GPUDatabase.default") as mock_default:
            assert catalog_gpus([]) == []
        mock_default.assert_not_called()
