from __future__ import annotations
from typing import Optional


def next_window(start_epoch: int, filter_range: int, head: int, finality: int) -> Optional[tuple[int, int]]:
    """Inclusive [start, end] window to query next, or None while nothing is final yet."""
    end_epoch = min(start_epoch + filter_range, head - finality)
    if end_epoch < start_epoch:
        return None
    return start_epoch, end_epoch

def shrink_range(filter_range: int) -> int:
    return max(1, filter_range // 2)

def resolve_start_epoch(latest_epoch: Optional[int], network_start: int) -> int:
    if latest_epoch is None:
        return network_start
    return max(latest_epoch + 1, network_start)
