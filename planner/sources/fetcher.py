"""Read just enough of a GGUF file to decode its metadata.

Model files run to tens of gigabytes but their key/value header is usually
well under a megabyte.  ``PartialFetcher.load_metadata`` asks for a small
prefix, tries to decode it, and doubles the prefix only when the decoder
reports ``TruncatedInput``.  Local paths and HTTP(S) URLs are both accepted.

Network errors (``httpx.HTTPError``) and cancellation propagate unchanged;
nothing is cached between calls.
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path

import httpx

from planner import config
from planner.errors import InvalidSource, TruncatedInput
from planner.gguf.decoder import decode
from planner.gguf.metadata import ModelMetadata
from planner.sources.huggingface import (
    is_huggingface,
    is_remote,
    normalize_url,
    parse_shard,
    repo_name,
    shard_filenames,
)

logger = logging.getLogger(__name__)


def extrapolate_shard_sizes(sizes: list[int | None], first_size: int) -> int:
    """Total size of a sharded file from per-part sizes, some unknown (``None``).

    Parts are summed in order until the first unknown one; from there the
    remaining parts are assumed to be the average of the known ones, or
    ``first_size`` each when none are known.
    """
    total = 0
    for index, size in enumerate(sizes):
        if size is None:
            remaining = len(sizes) - index
            if total > 0 and index > 0:
                return total + (total // index) * remaining
            return first_size * len(sizes)
        total += size
    return total


def _read_local_prefix(path: Path, length: int) -> bytes:
    with path.open("rb") as f:
        return f.read(length)


class PartialFetcher:
    """Fetches byte prefixes and sizes of local or remote model files.

    Pass an ``httpx.AsyncClient`` to share a connection pool (or a
    ``MockTransport`` in tests); otherwise one is created and closed with the
    fetcher.  Use as an async context manager.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        initial_prefix: int = config.INITIAL_PREFIX_BYTES,
        max_prefix: int = config.MAX_PREFIX_BYTES,
        token: str | None = config.HF_TOKEN,
        timeout: float = config.HTTP_TIMEOUT,
    ) -> None:
        if initial_prefix <= 0 or max_prefix <= 0:
            raise ValueError("Prefix sizes must be positive")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)
        self.initial_prefix = min(initial_prefix, max_prefix)
        self.max_prefix = max_prefix
        self._token = token

    async def __aenter__(self) -> PartialFetcher:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Source handling
    # ------------------------------------------------------------------

    @staticmethod
    def _location(source: str) -> str:
        """Validate *source* and return the normalized URL or expanded path."""
        if not isinstance(source, str) or not source.strip():
            raise InvalidSource(source)
        source = source.strip()
        if is_remote(source):
            return normalize_url(source)
        return str(Path(source).expanduser())

    def _headers(self, url: str) -> dict[str, str]:
        if self._token and is_huggingface(url):
            return {"Authorization": f"Bearer {self._token}"}
        return {}

    async def _head_size(self, url: str) -> int | None:
        response = await self._client.head(url, headers=self._headers(url), follow_redirects=True)
        response.raise_for_status()
        length = response.headers.get("content-length")
        return int(length) if length is not None else None

    async def _part_size(self, url: str) -> int | None:
        """Size of one shard; ``None`` when the server refuses the HEAD."""
        try:
            return await self._head_size(url)
        except httpx.HTTPStatusError as exc:
            logger.debug("HEAD %s failed with %d", url, exc.response.status_code)
            return None

    async def _sizes(self, location: str) -> tuple[int | None, int | None]:
        """(size of this file, size of the whole model across shards)."""
        if is_remote(location):
            file_size = await self._head_size(location)
            directory, _, filename = location.rpartition("/")
            if parse_shard(filename) is None:
                return file_size, file_size
            sizes = []
            for part in shard_filenames(filename):
                part_url = f"{directory}/{part}"
                sizes.append(file_size if part_url == location else await self._part_size(part_url))
            return file_size, extrapolate_shard_sizes(sizes, file_size or 0)

        path = Path(location)
        file_size = os.stat(path).st_size
        if parse_shard(path.name) is None:
            return file_size, file_size
        sizes = []
        for part in shard_filenames(path.name):
            sibling = path.with_name(part)
            sizes.append(sibling.stat().st_size if sibling.exists() else None)
        return file_size, extrapolate_shard_sizes(sizes, file_size)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def determine_total_size(self, source: str) -> int | None:
        """Total model size in bytes, summed over shards; ``None`` if unknown.

        Uses HEAD requests for URLs (no body is transferred) and ``os.stat``
        for local files.
        """
        _, total = await self._sizes(self._location(source))
        logger.debug("Total size of %s: %s bytes", source, total)
        return total

    async def fetch_prefix(self, source: str, length: int) -> bytes:
        """Bytes ``[0, length)`` of *source* (fewer if the file is shorter)."""
        location = self._location(source)
        if not is_remote(location):
            return await asyncio.to_thread(_read_local_prefix, Path(location), length)

        headers = {**self._headers(location), "Range": f"bytes=0-{length - 1}"}
        chunks: list[bytes] = []
        received = 0
        # Stream so a server that ignores Range cannot push the whole file
        async with self._client.stream(
            "GET", location, headers=headers, follow_redirects=True
        ) as response:
            response.raise_for_status()
            async for chunk in response.aiter_bytes():
                chunks.append(chunk)
                received += len(chunk)
                if received >= length:
                    break
        return b"".join(chunks)[:length]

    async def load_metadata(self, source: str) -> ModelMetadata:
        """Decode the metadata of *source* from the shortest prefix that works.

        Raises:
            InvalidSource: If *source* is empty, before any I/O.
            TruncatedInput: If the header is longer than the file or the cap.
            MalformedContainer, UnsupportedVersion: On a corrupt or old file.
            httpx.HTTPError: On any network failure.
        """
        location = self._location(source)
        file_size, total_size = await self._sizes(location)

        limit = min(file_size, self.max_prefix) if file_size else self.max_prefix
        length = min(self.initial_prefix, limit)
        attempt = 0

        while True:
            attempt += 1
            data = await self.fetch_prefix(location, length)
            try:
                metadata = decode(data)
                break
            except TruncatedInput as exc:
                if length >= limit or len(data) < length:
                    logger.debug("Giving up on %s after %d attempts: %s", location, attempt, exc)
                    raise
                length = min(length * 2, limit)
                logger.debug(
                    "Header of %s needs more than %d bytes, retrying with %d",
                    location,
                    len(data),
                    length,
                )

        logger.info(
            "Loaded metadata for %s: %d keys from %d bytes in %d attempt(s)",
            source,
            len(metadata.values),
            len(data),
            attempt,
        )
        return metadata.with_source(
            model_size_bytes=total_size,
            name=repo_name(location),
            url=location if is_remote(location) else None,
        )


async def load_metadata(source: str, client: httpx.AsyncClient | None = None, **kwargs) -> ModelMetadata:
    """One-shot ``PartialFetcher(...).load_metadata(source)``."""
    async with PartialFetcher(client, **kwargs) as fetcher:
        return await fetcher.load_metadata(source)
