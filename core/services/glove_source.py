"""
Glove measurement acquisition.

Key patterns:
- Protocol-based sources (a real Bluetooth/USB glove would implement the same read())
- Generic Result type for expected failures (dropped packets, disconnects)
- Async context manager for the recording lifecycle
- Bounded buffer: only the most recent readings are kept for a session
"""

import asyncio
import random
from collections import deque
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Generic, Protocol, TypeVar

import structlog
from pydantic import BaseModel, Field

from core.domain.models import Measurement

logger = structlog.get_logger(__name__)

ValueT = TypeVar("ValueT")
ErrorT = TypeVar("ErrorT", bound=BaseException)


class Result(Generic[ValueT, ErrorT]):
    """
    Explicit error handling without exceptions for expected failures.

    When to use: a glove dropping a packet is business as usual, not exceptional.
    """

    def __init__(self, value: ValueT | None = None, error: ErrorT | None = None) -> None:
        if value is not None and error is not None:
            raise ValueError("Result cannot have both value and error")
        if value is None and error is None:
            raise ValueError("Result must have either value or error")
        self._value: ValueT | None = value
        self._error: ErrorT | None = error

    @classmethod
    def ok(cls, value: ValueT) -> "Result[ValueT, ErrorT]":
        return cls(value=value)

    @classmethod
    def err(cls, error: ErrorT) -> "Result[ValueT, ErrorT]":
        return cls(error=error)

    def is_ok(self) -> bool:
        return self._error is None

    def is_err(self) -> bool:
        return self._error is not None

    def unwrap(self) -> ValueT:
        if self._error:
            raise self._error
        return self._value  # type: ignore

    def unwrap_or(self, default: ValueT) -> ValueT:
        return self._value if self._error is None else default  # type: ignore

    def unwrap_err(self) -> ErrorT:
        if self._error is None:
            raise ValueError("Called unwrap_err() on an Ok value")
        return self._error


class MeasurementSource(Protocol):
    """Anything that can produce one glove reading on demand."""

    source_name: str

    async def read(self) -> Result[Measurement, Exception]: ...


class SimulatedGloveSource:
    """
    Simulated biometric glove.

    Produces readings in healthy ranges: pressure 60-100 mmHg,
    temperature 32-36 °C, EMG 30-80 µV. ``failure_rate`` simulates dropped
    packets; ``rng`` makes sessions reproducible in tests.
    """

    PRESSURE_RANGE = (60.0, 100.0)
    TEMPERATURE_RANGE = (32.0, 36.0)
    EMG_RANGE = (30.0, 80.0)

    def __init__(
        self,
        source_name: str = "simulated-glove",
        failure_rate: float = 0.0,
        rng: random.Random | None = None,
    ) -> None:
        if not 0.0 <= failure_rate < 1.0:
            raise ValueError("failure_rate must be in [0, 1)")
        self.source_name = source_name
        self.failure_rate = failure_rate
        self._rng = rng or random.Random()
        self.battery_level = 100
        self.logger = logger.bind(source=source_name)

    async def read(self) -> Result[Measurement, Exception]:
        try:
            if self._rng.random() < self.failure_rate:
                raise ConnectionError(f"Lost packet from {self.source_name}")

            measurement = Measurement(
                timestamp=datetime.now(UTC),
                pressure=self._rng.uniform(*self.PRESSURE_RANGE),
                temperature=self._rng.uniform(*self.TEMPERATURE_RANGE),
                emg=self._rng.uniform(*self.EMG_RANGE),
            )
            self.battery_level = max(0, self.battery_level - 1)
            return Result.ok(measurement)

        except ConnectionError as e:
            self.logger.warning("glove_read_failed", error=str(e))
            return Result.err(e)


class GloveRecorderConfig(BaseModel):
    sample_interval_seconds: float = Field(
        default=1.0, ge=0.0, description="Delay between two reads of the glove."
    )
    buffer_size: int = Field(default=20, gt=0, description="Most recent readings kept per session.")


class GloveRecorder:
    """
    Records a session from one glove into a bounded buffer.

    Usage:
        async with recorder.recording_session():
            async for m in recorder.record(samples=20):
                ...
        recorder.measurements  # last buffer_size readings
    """

    def __init__(
        self, source: MeasurementSource, config: GloveRecorderConfig | None = None
    ) -> None:
        self.source = source
        self.config = config or GloveRecorderConfig()
        self.buffer: deque[Measurement] = deque(maxlen=self.config.buffer_size)
        self.failed_reads = 0
        self.logger = logger.bind(component="glove_recorder", source=source.source_name)
        self._is_recording = False

    @property
    def is_recording(self) -> bool:
        return self._is_recording

    @property
    def measurements(self) -> list[Measurement]:
        return list(self.buffer)

    @asynccontextmanager
    async def recording_session(self) -> AsyncIterator["GloveRecorder"]:
        """Starting a session clears the previous one's readings."""
        self.buffer.clear()
        self.failed_reads = 0
        self._is_recording = True
        self.logger.info("recording_session_started")
        try:
            yield self
        finally:
            self._is_recording = False
            self.logger.info(
                "recording_session_ended",
                kept=len(self.buffer),
                failed_reads=self.failed_reads,
            )

    async def record(self, samples: int) -> AsyncIterator[Measurement]:
        """Read ``samples`` times, yielding each successful reading as it arrives."""
        if not self._is_recording:
            raise RuntimeError("Recorder not running - use recording_session()")

        for i in range(samples):
            if not self._is_recording:
                break
            result = await self.source.read()
            if result.is_ok():
                measurement = result.unwrap()
                self.buffer.append(measurement)
                yield measurement
            else:
                self.failed_reads += 1

            if self.config.sample_interval_seconds > 0 and i < samples - 1:
                await asyncio.sleep(self.config.sample_interval_seconds)

    async def record_batch(self, samples: int) -> list[Measurement]:
        """Run a whole session and return the buffered readings."""
        async with self.recording_session():
            async for _ in self.record(samples):
                pass
        return self.measurements
