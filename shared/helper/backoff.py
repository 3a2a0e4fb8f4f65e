"""Retry timing for failed jobs, kept free of I/O so it can be tested without waiting."""

from datetime import timedelta


def compute_backoff(attempts: int, base_seconds: float = 60.0, max_seconds: float = 3600.0) -> timedelta:
    """Return the delay before a job with ``attempts`` finished attempts is retried.

    Exponential: ``base * 2**attempts``, capped at ``max_seconds``.
    With the default base this yields 2, 4, 8 minutes for attempts 1, 2, 3.

    Args:
        attempts (int): Number of attempts already made (>= 0).
        base_seconds (float): Base delay in seconds.
        max_seconds (float): Upper bound for the delay.

    Returns:
        timedelta: The delay.
    """
    if attempts < 0:
        raise ValueError("attempts must be >= 0")
    # cap the exponent so huge attempt counts cannot overflow the float
    delay = base_seconds * (2 ** min(attempts, 32))
    return timedelta(seconds=min(delay, max_seconds))
