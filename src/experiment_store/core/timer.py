from __future__ import annotations

import time


def _format_duration(ns: int) -> str:
    if ns <= 1_000:
        return f"{ns} nanosecs"
    if ns <= 1_000_000:
        us = ns // 1_000
        if us >= 3:
            return f"{us} microsecs"
        return f"{us}.{ns % 1_000:03d} microsecs"
    if ns <= 1_000_000_000:
        return f"{ns // 1_000_000} milliseconds"
    if ns <= 1_000_000_000_000:
        ms = ns // 1_000_000
        secs = ms // 1_000
        if secs >= 10:
            return f"{secs} seconds"
        return f"{secs}.{ms % 1_000:03d} seconds"
    total_secs = ns // 1_000_000_000
    if ns <= 60 * 1_000_000_000_000:
        return f"{total_secs // 60}.{total_secs % 60} minutes"
    return f"{total_secs // 3600}:{(total_secs // 60) % 60}:{total_secs % 60} hours"


class Timer:
    """Stopwatch over `time.perf_counter_ns`.

    `resume()` continues a stopped timer without losing the elapsed time.
    """

    def __init__(self) -> None:
        self._t0: int | None = None
        self._t1: int | None = None

    def start(self) -> Timer:
        self._t1 = None
        self._t0 = time.perf_counter_ns()
        return self

    def resume(self) -> Timer:
        if self._t0 is None:
            return self.start()
        if self._t1 is None:
            return self  # already running
        self._t0 = time.perf_counter_ns() - (self._t1 - self._t0)
        self._t1 = None
        return self

    def stop(self) -> Timer:
        if self._t0 is None:
            raise ValueError("Timer not even started")
        self._t1 = time.perf_counter_ns()
        return self

    @property
    def running(self) -> bool:
        return self._t0 is not None and self._t1 is None

    def nanoseconds(self) -> int:
        if self._t0 is None:
            return 0
        end = self._t1 if self._t1 is not None else time.perf_counter_ns()
        return end - self._t0

    def microseconds(self) -> int:
        return self.nanoseconds() // 1_000

    def milliseconds(self) -> int:
        return self.nanoseconds() // 1_000_000

    def seconds(self) -> int:
        return self.nanoseconds() // 1_000_000_000

    def to_string(self) -> str:
        if self._t0 is None:
            raise ValueError("Timer not even started")
        return _format_duration(self.nanoseconds())

    def __str__(self) -> str:
        return self.to_string() if self._t0 is not None else "Timer(not started)"

    def __enter__(self) -> Timer:
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()
