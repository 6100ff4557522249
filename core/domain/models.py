"""
Domain models for glove-based neuropathy screening.

These models represent the core business concepts and are framework-agnostic.
Stored records use camelCase aliases so the key-value payloads stay readable
by the existing web client.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def _now() -> datetime:
    return datetime.now(UTC)


def _as_utc(value: datetime) -> datetime:
    """Timestamps without an offset are taken to be UTC."""
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value


class RecordModel(BaseModel):
    """Base for everything we persist: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Self:
        return cls.model_validate(record)


class RiskLevel(str, Enum):
    """Neuropathy risk tiers, ordered by severity."""

    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"

    @property
    def severity(self) -> int:
        """Rank for ordering tiers; compare on this, not on the string value."""
        return _RISK_SEVERITY[self]

    @classmethod
    def from_label(cls, label: str) -> "RiskLevel":
        """Accept our own values as well as the legacy French labels."""
        normalized = label.strip().lower()
        if normalized in _LEGACY_LABELS:
            return _LEGACY_LABELS[normalized]
        return cls(normalized)


_RISK_SEVERITY = {RiskLevel.LOW: 0, RiskLevel.MODERATE: 1, RiskLevel.HIGH: 2}
_LEGACY_LABELS = {
    "faible": RiskLevel.LOW,
    "modéré": RiskLevel.MODERATE,
    "élevé": RiskLevel.HIGH,
}


class Measurement(RecordModel):
    """One glove reading."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(default_factory=_now)
    pressure: float = Field(description="Plantar/palmar pressure in mmHg")
    temperature: float = Field(description="Skin temperature in °C")
    emg: float = Field(description="EMG amplitude in µV")

    @field_validator("timestamp")
    @classmethod
    def timestamp_as_utc(cls, v: datetime) -> datetime:
        return _as_utc(v)


class StoredMeasurement(Measurement):
    """A measurement once it has been attached to a patient and persisted."""

    id: str
    patient_id: str
    doctor_id: str


class AggregateMetrics(RecordModel):
    """Per-signal means over one measurement batch."""

    model_config = ConfigDict(frozen=True)

    avg_pressure: float = Field(alias="avgPressure")
    avg_temperature: float = Field(alias="avgTemperature")
    avg_emg: float = Field(alias="avgEMG")


class Classification(BaseModel):
    """Classifier output before the caller assigns identity and timestamps."""

    model_config = ConfigDict(frozen=True)

    risk: RiskLevel
    diagnosis: str
    confidence: float = Field(gt=0.0, le=1.0)
    recommendations: tuple[str, ...]


class AnalysisResult(RecordModel):
    """Stored output of one classifier run for one patient."""

    model_config = ConfigDict(frozen=True)

    id: str
    patient_id: str
    doctor_id: str
    risk: RiskLevel
    diagnosis: str
    confidence: float = Field(gt=0.0, le=1.0)
    metrics: AggregateMetrics
    recommendations: list[str]
    created_at: datetime = Field(default_factory=_now)


class Patient(RecordModel):
    id: str
    doctor_id: str
    first_name: str = Field(min_length=1)
    last_name: str = Field(min_length=1)
    date_of_birth: str = ""
    phone: str = ""
    email: str = ""
    medical_history: str = ""
    diagnosis: str = ""
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class Medication(RecordModel):
    name: str = ""
    dosage: str = ""
    frequency: str = ""
    duration: str = ""

    @property
    def is_complete(self) -> bool:
        return bool(self.name.strip() and self.dosage.strip())


class Prescription(RecordModel):
    id: str
    doctor_id: str
    patient_id: str
    patient_name: str = ""
    doctor_name: str = ""
    doctor_specialty: str = ""
    medications: list[Medication] = Field(min_length=1)
    notes: str = ""
    date: datetime = Field(default_factory=_now)
    created_at: datetime = Field(default_factory=_now)

    @field_validator("date")
    @classmethod
    def date_as_utc(cls, v: datetime) -> datetime:
        return _as_utc(v)


class AlertType(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class Alert(RecordModel):
    id: str
    doctor_id: str
    type: AlertType = AlertType.INFO
    title: str = Field(min_length=1)
    message: str = ""
    patient_id: str | None = None
    patient_name: str | None = None
    created_at: datetime = Field(default_factory=_now)
    read: bool = False


class AlertThresholds(RecordModel):
    """Per-reading floors below which a measurement raises an alert."""

    pressure: float = 50.0
    temperature: float = 30.0
    emg: float = 20.0


class DoctorSettings(RecordModel):
    theme: str = "light"
    glove_connection_mode: str = "bluetooth"
    measurement_frequency: int = Field(default=1000, gt=0, description="Sampling period in ms")
    alert_thresholds: AlertThresholds = Field(default_factory=AlertThresholds)


class DoctorProfile(RecordModel):
    id: str
    email: str = ""
    name: str = ""
    specialty: str = ""
    created_at: datetime = Field(default_factory=_now)


class RequestContext(BaseModel):
    """Who is acting. Resolved by the API layer and passed into every service call."""

    model_config = ConfigDict(frozen=True)

    doctor_id: str = Field(min_length=1)
