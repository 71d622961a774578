"""Exponential backoff bookkeeping for feed reconnection.

``ReconnectPolicy`` tracks how many consecutive reconnect attempts have
failed and derives the delay before the next one. It holds no timers;
the connection supervisor owns the actual sleep.

Delay schedule:
    ``delay_for(n) = base_delay * multiplier ** n``. The supervisor
    advances the attempt counter *before* computing the delay, so with
    ``base_delay=2.0`` the first reconnect waits 4s, then 8s, 16s, ...

Bounds:
    ``attempt_count`` never exceeds ``max_attempts``. Once it reaches
    the limit, :meth:`next_attempt` returns ``None`` and the caller must
    stop reconnecting. A successful connect calls :meth:`reset`.

Example:
    >>> policy = ReconnectPolicy(base_delay=2.0, max_attempts=3)
    >>> [policy.delay_for(policy.next_attempt()) for _ in range(3)]
    [4.0, 8.0, 16.0]
    >>> policy.next_attempt() is None
    True
    >>> policy.reset()
    >>> policy.attempt_count
    0
"""


class ReconnectPolicy:
    """Attempt counter and exponential delay schedule.

    **NOT thread-safe.** Mutated only from the supervisor's event loop.

    Args:
        base_delay: Base delay in seconds. Must be positive.
        max_attempts: Maximum consecutive reconnect attempts. Zero
            disables reconnection.
        multiplier: Growth factor per attempt. Defaults to 2.

    Raises:
        ValueError: If any argument is out of range.
    """

    __slots__ = ("_base_delay", "_multiplier", "_max_attempts", "_attempt_count")

    def __init__(
        self,
        base_delay: float,
        max_attempts: int,
        multiplier: float = 2.0,
    ) -> None:
        if base_delay <= 0:
            raise ValueError(f"base_delay must be > 0, got {base_delay}")
        if max_attempts < 0:
            raise ValueError(f"max_attempts must be >= 0, got {max_attempts}")
        if multiplier < 1:
            raise ValueError(f"multiplier must be >= 1, got {multiplier}")
        self._base_delay: float = base_delay
        self._multiplier: float = multiplier
        self._max_attempts: int = max_attempts
        self._attempt_count: int = 0

    @property
    def base_delay(self) -> float:
        return self._base_delay

    @property
    def multiplier(self) -> float:
        return self._multiplier

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    @property
    def attempt_count(self) -> int:
        """Consecutive reconnect attempts since the last successful open."""
        return self._attempt_count

    @property
    def exhausted(self) -> bool:
        """Whether no further attempt is allowed."""
        return self._attempt_count >= self._max_attempts

    def delay_for(self, attempt: int) -> float:
        """Return the backoff delay in seconds for ``attempt``.

        Args:
            attempt: Attempt number (non-negative).

        Raises:
            ValueError: If ``attempt`` is negative.
        """
        if attempt < 0:
            raise ValueError(f"attempt must be >= 0, got {attempt}")
        return self._base_delay * self._multiplier**attempt

    def next_attempt(self) -> int | None:
        """Advance the attempt counter.

        Returns:
            The new attempt number (1-based), or ``None`` if the limit
            has already been reached. The counter is left unchanged in
            that case.
        """
        if self.exhausted:
            return None
        self._attempt_count += 1
        return self._attempt_count

    def reset(self) -> None:
        """Reset the attempt counter after a successful connect."""
        self._attempt_count = 0

    def __repr__(self) -> str:
        return (
            f"ReconnectPolicy(base_delay={self._base_delay}, "
            f"multiplier={self._multiplier}, max_attempts={self._max_attempts}, "
            f"attempt_count={self._attempt_count})"
        )
