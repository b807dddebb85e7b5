"""Elapsed call time policy shared by the turn-based and realtime calls."""
from dataclasses import dataclass
from typing import Optional


@dataclass
class TickEvents:
    """What a duration tick triggered."""

    minute_used: Optional[int] = None
    warning_remaining: Optional[int] = None
    limit_reached: bool = False


class CallTimer:
    """Tracks minutes used and the free tier call limit.

    The warning fires once when ``limit - warning_before`` is reached; the
    limit fires once at ``limit``. Premium calls only count minutes.
    """

    def __init__(self, limit_seconds: int, warning_before_seconds: int, is_premium: bool = False):
        self.limit_seconds = limit_seconds
        self.warning_before_seconds = warning_before_seconds
        self.is_premium = is_premium
        self.reset()

    def reset(self) -> None:
        self.last_minute = 0
        self.warning_shown = False
        self.limit_reached = False

    @property
    def warning_at(self) -> int:
        return self.limit_seconds - self.warning_before_seconds

    def update(self, elapsed_seconds: int) -> TickEvents:
        events = TickEvents()
        minute = elapsed_seconds // 60
        if minute > self.last_minute:
            self.last_minute = minute
            events.minute_used = minute

        if self.is_premium or self.limit_reached:
            return events

        if self.warning_at <= elapsed_seconds < self.limit_seconds and not self.warning_shown:
            self.warning_shown = True
            events.warning_remaining = self.limit_seconds - elapsed_seconds

        if elapsed_seconds >= self.limit_seconds:
            self.limit_reached = True
            events.limit_reached = True
        return events
