"""Data model for hardware inventory, runtime options and resource plans."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator


class GPUBackend(str, Enum):
    CUDA = "cuda"
    ROCM = "rocm"
    METAL = "metal"  # unified memory
    VULKAN = "vulkan"
    CPU = "cpu"


class UseCase(str, Enum):
    INFERENCE = "inference"
    TRAINING = "training"
    SERVING = "serving"


class CPUDescriptor(BaseModel):
    """One physical CPU package."""

    model_config = ConfigDict(frozen=True)

    core_count: int = Field(..., description="Physical cores in this package")
    efficiency_core_count: int = Field(
        0, description="Efficiency cores, excluded from inference threads"
    )
    thread_count: int | None = Field(
        None, description="Logical threads (defaults to core_count when unknown)"
    )
    model_name: str | None = None
    vendor_id: str | None = None

    @property
    def logical_threads(self) -> int:
        return self.thread_count if self.thread_count is not None else self.core_count


class GPUDescriptor(BaseModel):
    """One accelerator and its memory as seen at planning time."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str | None = None
    backend: GPUBackend = GPUBackend.CUDA
    free_memory: int = Field(..., ge=0, description="Free memory in bytes")
    total_memory: int = Field(..., ge=0, description="Total memory in bytes")
    driver_major: int = 0
    driver_minor: int = 0
    compute: str | None = Field(None, description="Compute capability, e.g. '8.9' or 'gfx1100'")
    minimum_memory: int = Field(0, ge=0, description="Bytes the runtime keeps for itself")

    @model_validator(mode="after")
    def _free_within_total(self) -> "GPUDescriptor":
        if self.free_memory > self.total_memory:
            raise ValueError(
                f"GPU {self.id}: free_memory ({self.free_memory}) exceeds "
                f"total_memory ({self.total_memory})"
            )
        return self


class RuntimeOptions(BaseModel):
    """Runtime parameters handed to the inference engine.

    ``gpu_layers=-1`` and ``threads=0`` mean "pick for me".  Sampling
    parameters are passed through untouched.
    """

    context_size: int = Field(4096, ge=1)
    batch_size: int = Field(512, ge=1)
    gpu_layers: int = Field(-1, ge=-1, description="-1 = auto")
    threads: int = Field(0, ge=0, description="0 = auto")
    temperature: float = 0.8
    top_k: int = 40
    top_p: float = 0.9
    repeat_penalty: float = 1.1
    kv_cache_type: str = "f16"
    num_parallel: int = Field(1, ge=1, description="Concurrent sequences sharing the context")


class MemoryEstimate(BaseModel):
    """VRAM prediction for one offload choice. Byte values throughout."""

    model_config = ConfigDict(frozen=True)

    layers: int = Field(..., description="Layers offloaded to GPU")
    layer_count: int = Field(..., description="Layers in the model")
    expected_vram: int = Field(..., description="VRAM needed for the requested layers")
    conservative_vram: int = Field(..., description="expected_vram plus the safety margin")
    gpu_sizes: list[int] = Field(default_factory=list, description="Per-GPU share of offloaded layers")
    tensor_split: str = Field("", description="Comma-separated layers per GPU; empty for one GPU")
    total_size: int = Field(..., description="Weights of every layer")
    fully_loaded: bool
    layer_weight_bytes: int
    kv_cache_bytes: int = Field(..., description="KV cache per layer")
    graph_bytes: int


class ThreadRecommendation(BaseModel):
    model_config = ConfigDict(frozen=True)

    minimum: int = 1
    maximum: int
    recommended: int
    reasoning: str


class ResolvedConfig(RuntimeOptions):
    """Fully resolved options plus the estimate that chose ``gpu_layers``."""

    estimate: MemoryEstimate
    flash_attention: bool = False

    def runtime_options(self) -> RuntimeOptions:
        return RuntimeOptions(**self.model_dump(include=set(RuntimeOptions.model_fields)))
