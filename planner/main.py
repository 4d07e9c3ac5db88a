"""CLI entry point for the model resource planner."""

import argparse
import asyncio
import json
import logging
import sys
import time
from pathlib import Path

import httpx
from pydantic import ValidationError

from planner.errors import PlannerError
from planner.exporters.json_export import export_plan, plan_to_dict
from planner.gguf.metadata import ModelMetadata
from planner.memory import KV_CACHE_TYPES
from planner.models import GPUDescriptor, ResolvedConfig
from planner.orchestrator import resolve
from planner.sources.cpu_detect import detect_cpus
from planner.sources.dbgpu_source import catalog_gpus
from planner.sources.fetcher import load_metadata
from planner.sources.gpu_detect import detect_gpus

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
RETRY_DELAY = 5  # seconds
MIB = 1024 * 1024


def parse_gpu_memory(value: str) -> list[GPUDescriptor]:
    """``"24576,8192"`` (MiB per GPU) → fully-free GPU descriptors."""
    gpus = []
    for index, part in enumerate(p for p in value.split(",") if p.strip()):
        try:
            mib = int(part)
        except ValueError:
            raise argparse.ArgumentTypeError(f"Invalid GPU memory '{part}', expected MiB") from None
        if mib <= 0:
            raise argparse.ArgumentTypeError(f"GPU memory must be positive, got {mib}")
        gpus.append(
            GPUDescriptor(
                id=str(index),
                name=f"manual-{index}",
                free_memory=mib * MIB,
                total_memory=mib * MIB,
                driver_major=12,
            )
        )
    return gpus


def build_gpu_inventory(args: argparse.Namespace) -> list[GPUDescriptor]:
    """GPUs from the command line if given, else detected unless --no-detect."""
    gpus = list(args.gpu_memory or []) + catalog_gpus(args.gpu_model or [])
    if gpus:
        return gpus
    if args.no_detect:
        logger.info("GPU detection disabled, planning CPU-only")
        return []
    return detect_gpus()


def build_user_options(args: argparse.Namespace) -> dict:
    overrides = {
        "context_size": args.ctx_size,
        "batch_size": args.batch_size,
        "gpu_layers": args.gpu_layers,
        "threads": args.threads,
        "kv_cache_type": args.cache_type,
        "num_parallel": args.parallel,
    }
    return {key: value for key, value in overrides.items() if value is not None}


def run_plan(args: argparse.Namespace) -> tuple[ResolvedConfig, ModelMetadata]:
    """Load metadata, take inventory and resolve the configuration."""
    logger.info("=== Metadata ===")
    metadata = asyncio.run(load_metadata(args.source))

    logger.info("=== Hardware ===")
    cpus = detect_cpus()
    gpus = build_gpu_inventory(args)

    logger.info("=== Resolve ===")
    resolved = resolve(cpus, gpus, metadata, build_user_options(args))
    return resolved, metadata


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Model resource planner")
    parser.add_argument("source", help="Path or URL of a GGUF model file")
    parser.add_argument("--ctx-size", type=int, help="Context size (default 4096)")
    parser.add_argument("--batch-size", type=int, help="Batch size (default 512)")
    parser.add_argument("--gpu-layers", type=int, help="Layers to offload (-1 = auto)")
    parser.add_argument("--threads", type=int, help="CPU threads (0 = auto)")
    parser.add_argument(
        "--cache-type",
        choices=[*KV_CACHE_TYPES, "fp16"],
        help="KV cache precision (default f16)",
    )
    parser.add_argument("--parallel", type=int, help="Parallel sequences (default 1)")
    parser.add_argument(
        "--gpu-memory",
        type=parse_gpu_memory,
        help="Plan against GPUs with this much free memory, in MiB (comma-separated)",
    )
    parser.add_argument(
        "--gpu-model",
        action="append",
        help="Plan against a catalog GPU, e.g. RTX4090 (repeatable)",
    )
    parser.add_argument(
        "--no-detect",
        action="store_true",
        help="Do not probe local GPUs",
    )
    parser.add_argument("--export", type=Path, metavar="DIR", help="Also write plan.json to DIR")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    for attempt in range(1, MAX_RETRIES + 1):
        try:
            resolved, metadata = run_plan(args)
            break

        except (PlannerError, ValidationError, httpx.HTTPStatusError, KeyError) as e:
            # Corrupt files and bad input won't fix themselves, skip retries
            logger.error("Planning failed: %s", e)
            sys.exit(1)

        except httpx.TransportError as e:
            if attempt < MAX_RETRIES:
                logger.warning(
                    "Attempt %d/%d failed: %s. Retrying in %ds...",
                    attempt,
                    MAX_RETRIES,
                    e,
                    RETRY_DELAY,
                )
                time.sleep(RETRY_DELAY)
            else:
                logger.exception("Planning failed after %d attempts", MAX_RETRIES)
                sys.exit(1)

    print(json.dumps(plan_to_dict(resolved, metadata), indent=2))
    if args.export is not None:
        export_plan(resolved, metadata, args.export)


if __name__ == "__main__":
    main()
