"""Backoff arithmetic and cancellable sleeps for the polling loops."""

import asyncio

from gcevm.errors import OperationCancelled


def capped(value, cap):
    """Return value limited to cap; a cap of None means unlimited."""
    if cap is None:
        return value
    return min(value, cap)


def delay_for(shape, interval, attempt, max_interval=None):
    """Delay after failed attempt number ``attempt`` (1-based) for a backoff shape.

    fixed:       interval, interval, interval, ...
    linear:      interval, 2*interval, 3*interval, ...
    exponential: interval, 2*interval, 4*interval, ...
    """
    if attempt < 1:
        raise ValueError(f"attempt is 1-based, got {attempt}")
    if shape == "fixed":
        raw = interval
    elif shape == "linear":
        raw = interval * attempt
    elif shape == "exponential":
        raw = interval * (2 ** (attempt - 1))
    else:
        raise ValueError(f"Unknown backoff shape: {shape}")
    return capped(raw, max_interval)


async def pause(delay, cancel=None):
    """Sleep for ``delay`` seconds unless the cancellation event fires.

    The event is checked before sleeping, so a loop that was cancelled while
    its last poll was in flight stops here instead of waiting out the delay.

    Raises:
        OperationCancelled: if ``cancel`` is set before or during the sleep.
    """
    if cancel is None:
        await asyncio.sleep(delay)
        return
    if cancel.is_set():
        raise OperationCancelled("cancelled before next wait")
    try:
        await asyncio.wait_for(cancel.wait(), timeout=delay)
    except TimeoutError:
        return
    raise OperationCancelled(f"cancelled during {delay}s wait")
