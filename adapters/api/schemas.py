"""Request bodies for the REST API. Responses reuse the domain models directly."""

from datetime import datetime

from pydantic import Field

from core.domain.models import AlertType, Measurement, Medication, RecordModel


class PatientCreate(RecordModel):
    first_name: str = Field(min_length=1)
    last_name: str = Field(min_length=1)
    date_of_birth: str = ""
    phone: str = ""
    email: str = ""
    medical_history: str = ""
    diagnosis: str = ""


class PatientUpdate(RecordModel):
    first_name: str | None = Field(default=None, min_length=1)
    last_name: str | None = Field(default=None, min_length=1)
    date_of_birth: str | None = None
    phone: str | None = None
    email: str | None = None
    medical_history: str | None = None
    diagnosis: str | None = None


class MeasurementCreate(Measurement):
    patient_id: str


class SimulatedSessionRequest(RecordModel):
    patient_id: str
    samples: int = Field(default=20, gt=0)


class PrescriptionCreate(RecordModel):
    patient_id: str
    medications: list[Medication] = Field(default_factory=list)
    notes: str = ""
    date: datetime | None = None


class AnalysisRequest(RecordModel):
    patient_id: str
    measurements: list[Measurement] | None = Field(
        default=None, description="Readings to classify; stored history is used when omitted"
    )


class AlertCreate(RecordModel):
    type: AlertType = AlertType.INFO
    title: str = Field(min_length=1)
    message: str = ""
    patient_id: str | None = None
    patient_name: str | None = None


class ProfileUpdate(RecordModel):
    email: str | None = None
    name: str | None = None
    specialty: str | None = None
