"""Export a resolved plan to JSON."""

import json
import logging
from datetime import UTC, datetime
from pathlib import Path

from planner.config import EXPORT_DIR
from planner.gguf.metadata import ModelMetadata
from planner.models import ResolvedConfig

logger = logging.getLogger(__name__)


def plan_to_dict(resolved: ResolvedConfig, metadata: ModelMetadata) -> dict:
    """Everything needed to reproduce a launch: options, estimate and model."""
    return {
        "model": metadata.summary(),
        "options": resolved.runtime_options().model_dump(mode="json"),
        "flash_attention": resolved.flash_attention,
        "estimate": resolved.estimate.model_dump(mode="json"),
        "generated_at": datetime.now(UTC).isoformat(),
    }


def export_plan(
    resolved: ResolvedConfig,
    metadata: ModelMetadata,
    output_dir: Path | None = None,
) -> Path:
    """Write the plan to ``plan.json`` in *output_dir* (created if missing)."""
    if output_dir is None:
        output_dir = EXPORT_DIR
    output_dir.mkdir(parents=True, exist_ok=True)

    path = output_dir / "plan.json"
    path.write_text(json.dumps(plan_to_dict(resolved, metadata), indent=2) + "\n")
    logger.info("Exported plan for %s to %s", metadata.name or "model", path)
    return path
