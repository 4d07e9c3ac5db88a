"""Resolve a complete runtime configuration from hardware, model and overrides."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from planner.gguf.metadata import ModelMetadata
from planner.memory import estimate, flash_attention_supported
from planner.models import CPUDescriptor, GPUDescriptor, ResolvedConfig, RuntimeOptions
from planner.threads import optimal_threads

logger = logging.getLogger(__name__)

AUTO_THREADS = 0
AUTO_GPU_LAYERS = -1


def validate_context_size(requested: int, model_train_ctx: int | None, num_parallel: int = 1) -> int:
    """Cap the context so each parallel sequence stays within the trained window.

    Without a known trained context (``None`` or ≤ 0) the request passes through.

    Raises:
        ValueError: If *num_parallel* is less than 1.
    """
    if num_parallel < 1:
        raise ValueError(f"num_parallel must be at least 1, got {num_parallel}")
    if not model_train_ctx or model_train_ctx <= 0:
        return requested
    if requested / num_parallel > model_train_ctx:
        capped = model_train_ctx * num_parallel
        logger.warning(
            "Requested context size %d too large for model (train_ctx: %d, parallel: %d), "
            "capping to %d",
            requested,
            model_train_ctx,
            num_parallel,
            capped,
        )
        return capped
    return requested


def merge_options(user_options: Mapping[str, Any] | RuntimeOptions | None) -> RuntimeOptions:
    """Defaults overlaid with whatever the caller set explicitly."""
    if user_options is None:
        overrides: dict[str, Any] = {}
    elif isinstance(user_options, RuntimeOptions):
        overrides = user_options.model_dump(exclude_unset=True)
    else:
        overrides = dict(user_options)
    return RuntimeOptions.model_validate({**RuntimeOptions().model_dump(), **overrides})


def resolve(
    cpus: Sequence[CPUDescriptor],
    gpus: Sequence[GPUDescriptor],
    model: ModelMetadata,
    user_options: Mapping[str, Any] | RuntimeOptions | None = None,
) -> ResolvedConfig:
    """Fill in every "auto" option and attach the memory estimate behind it.

    Thread count 0 becomes the performance-core count, GPU layers -1 becomes
    however many layers the estimator could fit, and the context is capped to
    the model's trained window.  Sampling parameters pass through unchanged.

    Raises:
        MissingRequiredFields: If the model lacks dimensions the estimator needs.
    """
    options = merge_options(user_options)
    updates: dict[str, Any] = {}

    if options.threads == AUTO_THREADS:
        updates["threads"] = optimal_threads(cpus)

    context_size = validate_context_size(
        options.context_size, model.context_length, options.num_parallel
    )
    updates["context_size"] = context_size

    auto_layers = options.gpu_layers == AUTO_GPU_LAYERS
    requested_layers = model.layer_count if auto_layers else options.gpu_layers
    memory = estimate(
        model,
        gpus,
        requested_layers=requested_layers or 0,
        context_size=context_size,
        cache_type=options.kv_cache_type,
        batch_size=options.batch_size,
    )
    if auto_layers:
        updates["gpu_layers"] = memory.layers

    resolved = ResolvedConfig(
        **{**options.model_dump(), **updates},
        estimate=memory,
        flash_attention=flash_attention_supported(gpus),
    )
    logger.info(
        "Resolved %s: threads=%d gpu_layers=%d/%d ctx=%d expected_vram=%.1f GiB",
        model.name or "model",
        resolved.threads,
        resolved.gpu_layers,
        memory.layer_count,
        resolved.context_size,
        memory.expected_vram / 1024**3,
    )
    return resolved
