"""Memory monitoring utilities that keep long exports within the worker budget."""

import gc
import logging

import psutil

from app.core.config import get_settings

logger = logging.getLogger(__name__)

DEFAULT_MEMORY_LIMIT = 800 * 1024 * 1024  # 800MB
DEFAULT_MEMORY_BASELINE = 500 * 1024 * 1024  # 500MB

_UNITS = {"K": 1024, "M": 1024**2, "G": 1024**3}


def parse_memory_size(value: str | int | None, default: int) -> int:
    """Parse sizes like "800M", "800MB", "1G" or plain bytes."""
    if value is None:
        return default
    if isinstance(value, int):
        return value
    text = value.upper().strip().removesuffix("B")
    try:
        if text and text[-1] in _UNITS:
            return int(text[:-1]) * _UNITS[text[-1]]
        return int(text)
    except ValueError:
        logger.warning(f"Invalid memory size {value!r}, using default")
        return default


def get_memory_usage() -> int:
    """Current resident set size of this process in bytes (not the peak)."""
    try:
        return psutil.Process().memory_info().rss
    except psutil.Error as e:
        logger.warning(f"Could not get memory usage: {e}")
        return 0


def get_memory_limit() -> int:
    return parse_memory_size(get_settings().worker_memory_limit, DEFAULT_MEMORY_LIMIT)


def get_memory_baseline() -> int:
    return parse_memory_size(
        get_settings().worker_memory_baseline, DEFAULT_MEMORY_BASELINE
    )


def check_memory_exceeded() -> tuple[bool, int, int]:
    """Check if memory usage has exceeded the hard limit.

    Returns:
        (is_exceeded, current_usage_bytes, limit_bytes)
    """
    current = get_memory_usage()
    limit = get_memory_limit()
    is_exceeded = current >= limit
    if is_exceeded:
        logger.error(
            f"Memory limit exceeded: {format_bytes(current)} >= {format_bytes(limit)}"
        )
    return is_exceeded, current, limit


def force_gc() -> None:
    collected = gc.collect()
    logger.debug(f"Garbage collection freed {collected} objects")


def format_bytes(bytes_val: float) -> str:
    """Format bytes to human-readable string."""
    for unit in ["B", "KB", "MB", "GB"]:
        if bytes_val < 1024.0:
            return f"{bytes_val:.1f}{unit}"
        bytes_val /= 1024.0
    return f"{bytes_val:.1f}TB"


def log_memory_status(context: str = "") -> None:
    """Log current memory status for debugging."""
    current = get_memory_usage()
    limit = get_memory_limit()
    baseline = get_memory_baseline()
    usage_percent = (current / limit * 100) if limit > 0 else 0

    context_str = f" [{context}]" if context else ""
    logger.info(
        f"Memory status{context_str}: {format_bytes(current)} / "
        f"{format_bytes(limit)} ({usage_percent:.1f}%) "
        f"[baseline: {format_bytes(baseline)}]"
    )
