"""Tests for plan export."""

import json

from planner.exporters.json_export import export_plan, plan_to_dict
from planner.orchestrator import resolve
from tests.test_memory import BIG_GPU, LLAMA
from tests.test_threads import HYBRID


class TestExportPlan:
    def test_writes_plan_json(self, tmp_path):
        resolved = resolve([HYBRID], [BIG_GPU], LLAMA, {"context_size": 8192})
        path = export_plan(resolved, LLAMA, tmp_path / "out")

        assert path == tmp_path / "out" / "plan.json"
        data = json.loads(path.read_text())
        assert data["model"]["name"] == "meta/llama"
        assert data["model"]["layer_count"] == 32
        assert data["options"]["context_size"] == 8192
        assert data["options"]["gpu_layers"] == 32
        assert "estimate" not in data["options"]
        assert data["estimate"]["fully_loaded"] is True
        assert data["estimate"]["conservative_vram"] > data["estimate"]["expected_vram"]
        assert "generated_at" in data

    def test_default_dir_from_config(self, tmp_path, monkeypatch):
        monkeypatch.setattr("planner.exporters.json_export.EXPORT_DIR", tmp_path)
        resolved = resolve([HYBRID], [], LLAMA)
        assert export_plan(resolved, LLAMA) == tmp_path / "plan.json"

    def test_plan_is_json_serializable(self):
        resolved = resolve([HYBRID], [BIG_GPU], LLAMA)
        json.dumps(plan_to_dict(resolved, LLAMA))
