"""Environment variable loading and configuration."""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
load_dotenv(_PROJECT_ROOT / ".env")


def get_env(key: str, default: str | None = None) -> str:
    """Get an environment variable or raise if missing and no default."""
    value = os.getenv(key, default)
    if value is None:
        raise ValueError(f"Missing required environment variable: {key}")
    return value


# Partial fetch window (bytes)
INITIAL_PREFIX_BYTES = int(get_env("PLANNER_INITIAL_PREFIX_BYTES", str(1024 * 1024)))
MAX_PREFIX_BYTES = int(get_env("PLANNER_MAX_PREFIX_BYTES", str(64 * 1024 * 1024)))

# Network
HTTP_TIMEOUT = float(get_env("PLANNER_HTTP_TIMEOUT", "30"))
HF_TOKEN = os.getenv("HF_TOKEN")  # Optional, only needed for gated repos

# Paths
EXPORT_DIR = Path(get_env("PLANNER_EXPORT_DIR", str(_PROJECT_ROOT / "plans")))
