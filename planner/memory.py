"""VRAM estimation and GPU layer placement.

Pure computation — no I/O.  Every figure is an integer byte count, so the
same inputs always give the same ``MemoryEstimate``.

Memory needed to offload ``n`` layers::

    expected(n) = n * (layer_weight + kv_cache_per_layer) + graph + FIXED_OVERHEAD

where ``kv_cache_per_layer`` uses the KV head count (not the query head
count) so grouped-query attention models are not overestimated.  The
offload count is the largest ``n`` up to the requested number of layers
whose ``expected(n)`` fits in the reservable memory of the supplied GPUs.
``expected_vram`` itself is ``expected(requested)``, a function of the
request alone, so it never shrinks when a longer context pushes layers
off the GPU.  With no GPUs at all nothing is offloaded and the estimate
is zero.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence

from planner.errors import MissingRequiredFields
from planner.gguf.metadata import ModelMetadata
from planner.models import GPUDescriptor, MemoryEstimate

logger = logging.getLogger(__name__)

MIB = 1024 * 1024

SAFETY_MARGIN_BYTES = 577 * MIB  # added to every conservative figure
FIXED_OVERHEAD_BYTES = 256 * MIB  # runtime buffers independent of the model
GPU_RESERVE_RATIO = 0.9  # share of free memory we plan to use
BYTES_PER_FLOAT32 = 4

# Used only when the file size is unknown; f16 weights overestimate every
# quantized model, which is the safe direction.
FALLBACK_BYTES_PER_PARAM = 2

# Cache type → (elements per block, bytes per block), from the ggml block layouts
KV_CACHE_TYPES: dict[str, tuple[int, int]] = {
    "f32": (1, 4),
    "f16": (1, 2),
    "q8_0": (32, 34),
    "q5_1": (32, 24),
    "q5_0": (32, 22),
    "q4_1": (32, 20),
    "q4_0": (32, 18),
}
_CACHE_TYPE_ALIASES = {"fp16": "f16", "fp32": "f32"}


# ---------------------------------------------------------------------------
# Per-component sizes
# ---------------------------------------------------------------------------


def cache_block_layout(cache_type: str) -> tuple[int, int]:
    """Return (elements, bytes) per block for a KV cache type."""
    key = cache_type.lower()
    key = _CACHE_TYPE_ALIASES.get(key, key)
    if key not in KV_CACHE_TYPES:
        raise ValueError(
            f"Unknown KV cache type '{cache_type}'. Supported: {', '.join(KV_CACHE_TYPES)}"
        )
    return KV_CACHE_TYPES[key]


def kv_cache_bytes_per_layer(
    context_size: int, kv_heads: int, head_dim: int, cache_type: str = "f16"
) -> int:
    """Key and value tensors for one layer across the whole context."""
    block_elements, block_bytes = cache_block_layout(cache_type)
    elements = context_size * kv_heads * head_dim * 2
    return math.ceil(elements * block_bytes / block_elements)


def graph_bytes(
    batch_size: int, context_size: int, embedding_dim: int, feed_forward_dim: int, head_count: int
) -> int:
    """Compute-graph scratch: activations for one batch plus attention scores.

    Both terms are float32 and scale linearly with batch size.
    """
    activations = batch_size * (embedding_dim + feed_forward_dim) * BYTES_PER_FLOAT32
    scores = batch_size * context_size * head_count * BYTES_PER_FLOAT32
    return activations + scores


def fallback_model_size(layer_count: int, embedding_dim: int, feed_forward_dim: int) -> int:
    """Approximate weight bytes from dimensions when the file size is unknown.

    Per layer: four E×E attention projections and three E×FF gated FFN matrices.
    """
    params_per_layer = 4 * embedding_dim * embedding_dim + 3 * embedding_dim * feed_forward_dim
    return layer_count * params_per_layer * FALLBACK_BYTES_PER_PARAM


def reservable_memory(gpu: GPUDescriptor) -> int:
    """Free memory we are willing to plan against on one GPU."""
    usable = max(gpu.free_memory - gpu.minimum_memory, 0)
    return int(usable * GPU_RESERVE_RATIO)


def flash_attention_supported(gpus: Sequence[GPUDescriptor]) -> bool:
    """True when every GPU can run flash attention (Metal, ROCm, CUDA driver ≥ 7)."""
    if not gpus:
        return False
    for gpu in gpus:
        if gpu.backend.value in ("metal", "rocm"):
            continue
        if gpu.backend.value == "cuda" and gpu.driver_major >= 7:
            continue
        return False
    return True


# ---------------------------------------------------------------------------
# Layer distribution
# ---------------------------------------------------------------------------


def split_proportional(total: int, weights: Sequence[int]) -> list[int]:
    """Split *total* into integer parts proportional to *weights*.

    Largest-remainder method: the parts always sum to *total*, and ties go to
    the earlier entry so the result is stable for a given input order.
    """
    if not weights:
        return []
    weight_sum = sum(weights)
    if weight_sum <= 0:
        weights = [1] * len(weights)
        weight_sum = len(weights)

    parts = [total * w // weight_sum for w in weights]
    remainders = [(total * w % weight_sum, -i) for i, w in enumerate(weights)]
    leftover = total - sum(parts)
    for _, neg_index in sorted(remainders, reverse=True)[:leftover]:
        parts[-neg_index] += 1
    return parts


# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------


def _required_dimensions(metadata: ModelMetadata) -> tuple[int, int, int, int]:
    fields = {
        "layer_count": metadata.layer_count,
        "kv_head_count": metadata.kv_head_count,
        "embedding_dim": metadata.embedding_dim,
        "context_length": metadata.context_length,
    }
    missing = [name for name, value in fields.items() if value is None]
    if missing:
        raise MissingRequiredFields(missing)
    if fields["layer_count"] <= 0:
        raise MissingRequiredFields(["layer_count"])
    return (
        fields["layer_count"],
        fields["kv_head_count"],
        fields["embedding_dim"],
        fields["context_length"],
    )


def estimate(
    metadata: ModelMetadata,
    gpus: Sequence[GPUDescriptor],
    requested_layers: int,
    context_size: int,
    cache_type: str = "f16",
    batch_size: int = 512,
) -> MemoryEstimate:
    """Estimate VRAM for offloading up to *requested_layers* layers.

    Args:
        metadata: Decoded model metadata.  ``model_size_bytes`` is optional.
        gpus: GPU inventory; may be empty.
        requested_layers: Upper bound on offloaded layers (clamped to the model).
        context_size: Total context tokens across all parallel sequences.
        cache_type: KV cache precision, e.g. ``f16`` or ``q8_0``.
        batch_size: Prompt-processing batch size.

    Raises:
        MissingRequiredFields: If a dimension needed for the estimate is absent.
        ValueError: If *cache_type* is not recognized.
    """
    layer_count, kv_heads, embedding_dim, _trained_ctx = _required_dimensions(metadata)
    feed_forward_dim = metadata.feed_forward_dim or 4 * embedding_dim
    head_count = metadata.head_count or kv_heads
    head_dim = metadata.head_dim

    # 1. Clamp the request to the model
    requested = min(max(requested_layers, 0), layer_count)

    # 2. Weights per layer
    if metadata.model_size_bytes:
        total_size = metadata.model_size_bytes
    else:
        total_size = fallback_model_size(layer_count, embedding_dim, feed_forward_dim)
        logger.debug("Model size unknown, using dimension-based estimate of %d bytes", total_size)
    layer_weight = total_size // layer_count

    # 3. KV cache per layer and graph scratch
    kv_per_layer = kv_cache_bytes_per_layer(context_size, kv_heads, head_dim, cache_type)
    graph = graph_bytes(batch_size, context_size, embedding_dim, feed_forward_dim, head_count)
    overhead = graph + FIXED_OVERHEAD_BYTES
    per_layer = layer_weight + kv_per_layer

    if not gpus:
        return MemoryEstimate(
            layers=0,
            layer_count=layer_count,
            expected_vram=0,
            conservative_vram=SAFETY_MARGIN_BYTES,
            gpu_sizes=[],
            tensor_split="",
            total_size=layer_weight * layer_count,
            fully_loaded=False,
            layer_weight_bytes=layer_weight,
            kv_cache_bytes=kv_per_layer,
            graph_bytes=graph,
        )

    # 4. Largest offload that fits the combined reservable memory
    reservable = [reservable_memory(gpu) for gpu in gpus]
    budget = sum(reservable)
    fitting = max((budget - overhead) // per_layer, 0) if per_layer > 0 else requested
    layers = min(requested, fitting)
    expected = requested * per_layer + overhead

    # 5. Spread the offloaded layers across GPUs
    layer_split = split_proportional(layers, reservable)
    overhead_split = split_proportional(overhead, layer_split if layers else reservable)
    gpu_sizes = [n * per_layer + extra for n, extra in zip(layer_split, overhead_split)]
    tensor_split = ",".join(str(n) for n in layer_split) if len(gpus) > 1 and layers else ""

    fully_loaded = layers == layer_count and expected <= budget

    logger.debug(
        "Offload %d/%d layers: expected %d bytes, budget %d bytes across %d GPU(s)",
        layers,
        layer_count,
        expected,
        budget,
        len(gpus),
    )
    return MemoryEstimate(
        layers=layers,
        layer_count=layer_count,
        expected_vram=expected,
        conservative_vram=expected + SAFETY_MARGIN_BYTES,
        gpu_sizes=gpu_sizes,
        tensor_split=tensor_split,
        total_size=layer_weight * layer_count,
        fully_loaded=fully_loaded,
        layer_weight_bytes=layer_weight,
        kv_cache_bytes=kv_per_layer,
        graph_bytes=graph,
    )
