"""
Caching utilities for expensive detection passes.

Each caller computes its own key; this module only knows how to store and
fetch pickled results under ``<prefix>_<key>.pkl``.
"""

import pickle
from pathlib import Path
from typing import Any

from .logger import get_logger

logger = get_logger(__name__)


def load_from_cache(cache_dir: Path | None, cache_key: str, cache_prefix: str) -> Any | None:
    """
    Load cached result from disk.

    Args:
        cache_dir: Directory containing cache files
        cache_key: MD5 hash identifying this cached result
        cache_prefix: Prefix for cache filename (e.g., "detection")

    Returns:
        Cached data if available and loadable, None otherwise
    """
    if cache_dir is None:
        return None

    cache_file = Path(cache_dir) / f"{cache_prefix}_{cache_key}.pkl"
    if not cache_file.exists():
        return None

    try:
        with cache_file.open("rb") as f:
            cached = pickle.load(f)
    except (OSError, EOFError, pickle.UnpicklingError, AttributeError) as exc:
        logger.warning(f"Ignoring unreadable cache file {cache_file}: {exc}")
        return None

    logger.info(f"Loaded cached {cache_prefix} results (key={cache_key[:8]}...)")
    return cached


def save_to_cache(cache_dir: Path | None, cache_key: str, cache_prefix: str, data: Any) -> None:
    """
    Save result to cache on disk.

    Args:
        cache_dir: Directory to store cache files
        cache_key: MD5 hash identifying this cached result
        cache_prefix: Prefix for cache filename
        data: Data to cache (must be pickle-serializable)
    """
    if cache_dir is None:
        return

    cache_dir = Path(cache_dir)
    cache_dir.mkdir(parents=True, exist_ok=True)
    cache_file = cache_dir / f"{cache_prefix}_{cache_key}.pkl"

    try:
        with cache_file.open("wb") as f:
            pickle.dump(data, f)
    except OSError as exc:
        logger.warning(f"Failed to cache {cache_prefix} results: {exc}")
        return
    logger.debug(f"Cached {cache_prefix} results (key={cache_key[:8]}...)")
