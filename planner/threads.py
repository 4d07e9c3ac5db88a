"""CPU thread budgeting for inference.

Efficiency cores slow down latency-bound token generation, so the default
budget counts performance cores only, summed over every CPU package.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from planner.models import CPUDescriptor, ThreadRecommendation, UseCase

logger = logging.getLogger(__name__)

DEFAULT_MAX_THREADS_PER_CORE = 2


def performance_cores(cpu: CPUDescriptor) -> int:
    # Efficiency count is clamped to [0, core_count]: a bogus negative value
    # must not inflate the budget.
    efficiency = min(max(cpu.efficiency_core_count, 0), cpu.core_count)
    return max(0, cpu.core_count - efficiency)


def optimal_threads(cpus: Sequence[CPUDescriptor]) -> int:
    """Performance cores across all CPU packages."""
    return sum(performance_cores(cpu) for cpu in cpus)


def validate_thread_count(
    requested: int,
    cpus: Sequence[CPUDescriptor],
    max_threads_per_core: int = DEFAULT_MAX_THREADS_PER_CORE,
) -> int:
    """Cap *requested* to what the hardware can usefully run. Never below 1."""
    optimal = optimal_threads(cpus)
    total_cores = sum(cpu.core_count for cpu in cpus)
    ceiling = min(optimal, total_cores * max_threads_per_core)

    if requested > ceiling:
        capped = max(1, ceiling)
        logger.warning(
            "Requested %d threads exceeds optimal %d for this CPU, capping to %d",
            requested,
            optimal,
            capped,
        )
        return capped
    if requested < 1:
        logger.warning("Requested %d threads, using 1", requested)
        return 1
    return requested


def recommendation(
    cpus: Sequence[CPUDescriptor], use_case: UseCase | str = UseCase.INFERENCE
) -> ThreadRecommendation:
    """Thread range for a workload type, with a one-line justification."""
    use_case = UseCase(use_case)
    optimal = optimal_threads(cpus)
    logical = sum(cpu.logical_threads for cpu in cpus)

    if use_case == UseCase.TRAINING:
        recommended = min(int(optimal * 1.5), logical)
        maximum = min(logical, optimal * 2)
        reasoning = (
            f"Training is throughput-bound and tolerates oversubscription; "
            f"using up to 1.5x the {optimal} performance cores"
        )
    elif use_case == UseCase.SERVING:
        recommended = max(1, optimal // 2)
        maximum = optimal
        reasoning = (
            f"Serving leaves headroom for concurrent requests; "
            f"half of the {optimal} performance cores per model"
        )
    else:
        recommended = optimal
        maximum = optimal
        reasoning = (
            f"Inference is latency-bound; one thread per performance core ({optimal}), "
            f"efficiency cores excluded"
        )

    recommended = max(1, recommended)
    return ThreadRecommendation(
        minimum=1,
        maximum=max(maximum, recommended),
        recommended=recommended,
        reasoning=reasoning,
    )
