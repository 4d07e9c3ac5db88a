"""HuggingFace URL handling — normalization, shard naming and repo names.

No I/O here; the fetcher calls these before it touches the network so that
repeated requests for the same file always hit the same URL.
"""

import re
from pathlib import PurePosixPath
from urllib.parse import urlsplit

HF_HOST = "huggingface.co"

# "<base>-00001-of-00003.gguf"
SHARD_PATTERN = re.compile(r"^(?P<base>.+)-(?P<part>\d+)-of-(?P<total>\d+)\.gguf$")
SHARD_DIGITS = 5


def is_remote(source: str) -> bool:
    return source.startswith(("http://", "https://"))


def is_huggingface(url: str) -> bool:
    host = urlsplit(url).hostname or ""
    return host == HF_HOST or host.endswith("." + HF_HOST)


def normalize_url(url: str) -> str:
    """Rewrite a HuggingFace page URL into a stable raw-content URL.

    Drops the query string and fragment (``?download=true`` and friends) and
    turns ``/blob/<rev>/`` into ``/resolve/<rev>/``.  Other hosts are left
    alone since their query strings may carry signatures.
    """
    if not is_huggingface(url):
        return url
    base = url.split("#", 1)[0].split("?", 1)[0]
    return base.replace("/blob/", "/resolve/", 1)


def parse_shard(filename: str) -> tuple[str, int, int] | None:
    """Split a sharded filename into (base, part, total), or None if not sharded."""
    match = SHARD_PATTERN.match(filename)
    if not match:
        return None
    return match["base"], int(match["part"]), int(match["total"])


def shard_filename(base: str, part: int, total: int) -> str:
    return f"{base}-{part:0{SHARD_DIGITS}d}-of-{total:0{SHARD_DIGITS}d}.gguf"


def shard_filenames(filename: str) -> list[str]:
    """All sibling filenames of a sharded file, in part order.

    A file that is not sharded is its own only part.
    """
    parsed = parse_shard(filename)
    if parsed is None:
        return [filename]
    base, _part, total = parsed
    return [shard_filename(base, part, total) for part in range(1, total + 1)]


def repo_name(source: str) -> str:
    """Human-readable model name: ``owner/repo`` for HF URLs, else the file stem."""
    if is_remote(source) and is_huggingface(source):
        segments = [s for s in urlsplit(source).path.split("/") if s]
        if len(segments) >= 2:
            return f"{segments[0]}/{segments[1]}"

    path = urlsplit(source).path if is_remote(source) else source
    name = PurePosixPath(path.replace("\\", "/")).name
    return name.removesuffix(".gguf") or source
