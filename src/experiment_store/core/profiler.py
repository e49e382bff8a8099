from __future__ import annotations

import resource
import time
from dataclasses import asdict, dataclass, fields
from typing import Protocol, runtime_checkable

from .errors import ProfilerError
from .fields import Field, FieldType


@runtime_checkable
class Profiler(Protocol):
    """What the store needs from a profiler: a start/stop contract and a record."""

    def start(self) -> None:  # pragma: no cover - interface
        ...

    def stop(self) -> object:  # pragma: no cover - interface
        ...

    def snapshot(self) -> object:  # pragma: no cover - interface
        ...

    def to_record(self) -> list[Field]:  # pragma: no cover - interface
        ...


@dataclass(frozen=True)
class ResourceSnapshot:
    wall_time_us: int = 0
    user_time_us: int = 0
    system_time_us: int = 0
    minor_faults: int = 0
    major_faults: int = 0
    voluntary_switches: int = 0
    involuntary_switches: int = 0

    def __add__(self, other: ResourceSnapshot) -> ResourceSnapshot:
        return ResourceSnapshot(
            **{f.name: getattr(self, f.name) + getattr(other, f.name) for f in fields(self)}
        )

    def __str__(self) -> str:
        return ", ".join(f"{key}: {value}" for key, value in asdict(self).items())


def _sample() -> tuple[int, resource.struct_rusage]:
    return time.perf_counter_ns(), resource.getrusage(resource.RUSAGE_SELF)


def _delta(start: tuple[int, resource.struct_rusage], end: tuple[int, resource.struct_rusage]) -> ResourceSnapshot:
    t0, r0 = start
    t1, r1 = end
    return ResourceSnapshot(
        wall_time_us=(t1 - t0) // 1_000,
        user_time_us=int(round((r1.ru_utime - r0.ru_utime) * 1_000_000)),
        system_time_us=int(round((r1.ru_stime - r0.ru_stime) * 1_000_000)),
        minor_faults=r1.ru_minflt - r0.ru_minflt,
        major_faults=r1.ru_majflt - r0.ru_majflt,
        voluntary_switches=r1.ru_nvcsw - r0.ru_nvcsw,
        involuntary_switches=r1.ru_nivcsw - r0.ru_nivcsw,
    )


class ResourceProfiler:
    """Profile the current process through getrusage(2).

    Usage:
        profiler = ResourceProfiler()
        profiler.start()
        ... computation ...
        profiler.stop()
        execution.add("run_time").with_fields(profiler.to_record()).save()
    """

    def __init__(self, prefix: str = "") -> None:
        self.prefix = prefix
        self._start: tuple[int, resource.struct_rusage] | None = None
        self._last = ResourceSnapshot()

    def start(self) -> None:
        self._start = _sample()

    def snapshot(self) -> ResourceSnapshot:
        """Counters since `start()` while running, else those of the last stop."""

        if self._start is None:
            return self._last
        return _delta(self._start, _sample())

    def stop(self) -> ResourceSnapshot:
        if self._start is None:
            raise ProfilerError("Profiler not started")
        self._last = _delta(self._start, _sample())
        self._start = None
        return self._last

    def to_record(self) -> list[Field]:
        data = asdict(self.snapshot())
        return [
            Field.of(f"{self.prefix}{key}", value, FieldType.INTEGER)
            for key, value in data.items()
        ]

    def __enter__(self) -> ResourceProfiler:
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()
