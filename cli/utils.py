"""Utility functions for CLI output."""

from typing import Optional

from cli.constants import GREEN, RED, RESET, YELLOW
from engine.state import StreamStatus, SyncReport


def format_file_size(size_bytes: int) -> str:
    """
    Format file size in bytes to human-readable format with appropriate unit.

    Uses binary units (1024-based) and automatically selects the most
    appropriate unit (B, KiB, MiB, GiB, TiB).

    Args:
        size_bytes: File size in bytes

    Returns:
        Formatted string with size and unit (e.g., "1.50 MiB", "512 B")
    """
    if size_bytes < 1024:
        return f"{size_bytes} B"

    units = ['KiB', 'MiB', 'GiB', 'TiB']
    size = size_bytes / 1024.0

    for unit in units:
        if size < 1024.0:
            return f"{size:.2f} {unit}"
        size /= 1024.0

    return f"{size:.2f} PiB"


def short_id(value: Optional[str], length: int = 12) -> str:
    return (value or "")[:length]


def format_report(report: SyncReport, label: str) -> str:
    """
    One-line summary of a successful sync.

    Args:
        report: Report ending in DONE
        label: What was synced ("stream" or "tree")
    """
    verb = "Pushed" if report.direction == "push" else "Pulled"
    transferred = report.total_transferred
    skipped = len(report.skipped) + sum(len(child.skipped) for child in report.children)
    note = "" if report.created else f" {YELLOW}(already up to date){RESET}"
    return (
        f"{GREEN}✓{RESET} {verb} {label} {report.target_id}{note}\n"
        f"  chunks transferred: {transferred}, already present: {skipped}"
    )


def format_failure(report: Optional[SyncReport], error: Exception) -> str:
    """Describe a FAILED sync, listing the chunk/stream IDs involved."""
    if report is None:
        return f"{RED}✗{RESET} {error}"
    kind = report.failure_kind.value if report.failure_kind else "error"
    lines = [f"{RED}✗{RESET} {report.direction} of {report.target_id} failed ({kind}): {error}"]
    for failed_id in report.failure_ids:
        lines.append(f"  failed: {failed_id}")
    return "\n".join(lines)


def format_status(status: StreamStatus, label: str) -> str:
    """Describe how a local stream compares with the repository."""
    if status.in_sync:
        return f"{GREEN}✓{RESET} {label}: up to date [{short_id(status.stream_id)}]"
    state = "published" if status.published else "not published"
    return (
        f"{YELLOW}•{RESET} {label}: {state}, "
        f"{len(status.missing_chunks)}/{status.total_chunks} chunks missing remotely [{short_id(status.stream_id)}]"
    )
