"""Decoded GGUF metadata and the normalization layer over it.

GGUF keys are prefixed with the architecture name (``llama.block_count``,
``qwen2.attention.head_count_kv``, ...).  The properties below find the
handful of fields the planner needs by key suffix, so a new model family
works without being registered anywhere.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

DEFAULT_HEAD_DIM = 128

# Normalized field name → architecture-relative key suffix
FIELD_SUFFIXES: dict[str, str] = {
    "layer_count": ".block_count",
    "kv_head_count": ".attention.head_count_kv",
    "head_count": ".attention.head_count",
    "embedding_dim": ".embedding_length",
    "feed_forward_dim": ".feed_forward_length",
    "context_length": ".context_length",
    "key_length": ".attention.key_length",
}


def _as_int(value: Any) -> int | None:
    """Collapse a scalar or per-layer array into one integer (max over arrays)."""
    if isinstance(value, tuple):
        numbers = [int(v) for v in value if isinstance(v, (int, float)) and not isinstance(v, bool)]
        return max(numbers) if numbers else None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    return None


@dataclass(frozen=True)
class ModelMetadata:
    """Key/value section of a GGUF file plus what we know about its source.

    ``values`` is exposed read-only; arrays are tuples.  A new instance is
    produced by ``with_source`` rather than mutating this one.
    """

    values: Mapping[str, Any]
    version: int
    tensor_count: int
    header_size: int = 0
    model_size_bytes: int | None = None
    name: str | None = None
    url: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.values, MappingProxyType):
            object.__setattr__(self, "values", MappingProxyType(dict(self.values)))

    def __getitem__(self, key: str) -> Any:
        return self.values[key]

    def __contains__(self, key: object) -> bool:
        return key in self.values

    def get(self, key: str, default: Any = None) -> Any:
        return self.values.get(key, default)

    def with_source(
        self,
        model_size_bytes: int | None = None,
        name: str | None = None,
        url: str | None = None,
    ) -> ModelMetadata:
        return dataclasses.replace(
            self,
            model_size_bytes=model_size_bytes,
            name=name,
            url=url,
        )

    # ------------------------------------------------------------------
    # Normalization
    # ------------------------------------------------------------------

    @property
    def architecture(self) -> str | None:
        arch = self.values.get("general.architecture")
        return arch if isinstance(arch, str) else None

    def find(self, suffix: str) -> Any:
        """Value of ``<arch><suffix>``, else of the first key ending in *suffix*."""
        arch = self.architecture
        if arch is not None and f"{arch}{suffix}" in self.values:
            return self.values[f"{arch}{suffix}"]
        for key, value in self.values.items():
            if key.endswith(suffix):
                return value
        return None

    def _field(self, name: str) -> int | None:
        return _as_int(self.find(FIELD_SUFFIXES[name]))

    @property
    def layer_count(self) -> int | None:
        return self._field("layer_count")

    @property
    def head_count(self) -> int | None:
        return self._field("head_count")

    @property
    def kv_head_count(self) -> int | None:
        # Files without head_count_kv use plain multi-head attention
        kv_heads = self._field("kv_head_count")
        return kv_heads if kv_heads is not None else self.head_count

    @property
    def embedding_dim(self) -> int | None:
        return self._field("embedding_dim")

    @property
    def feed_forward_dim(self) -> int | None:
        return self._field("feed_forward_dim")

    @property
    def context_length(self) -> int | None:
        return self._field("context_length")

    @property
    def head_dim(self) -> int:
        key_length = self._field("key_length")
        if key_length:
            return key_length
        embedding, heads = self.embedding_dim, self.head_count
        if embedding and heads:
            return embedding // heads
        return DEFAULT_HEAD_DIM

    def summary(self) -> dict[str, Any]:
        """Normalized fields as a plain dict, for logging and export."""
        return {
            "name": self.name,
            "url": self.url,
            "architecture": self.architecture,
            "version": self.version,
            "tensor_count": self.tensor_count,
            "model_size_bytes": self.model_size_bytes,
            "layer_count": self.layer_count,
            "head_count": self.head_count,
            "kv_head_count": self.kv_head_count,
            "head_dim": self.head_dim,
            "embedding_dim": self.embedding_dim,
            "feed_forward_dim": self.feed_forward_dim,
            "context_length": self.context_length,
        }
