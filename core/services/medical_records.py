"""
Medical-record services over the key-value store.

Key layout:
    user:{doctorId}                         doctor profile
    settings:{doctorId}                     doctor settings
    patient:{doctorId}:{patientId}          patient
    measurement:{patientId}:{id}            glove reading
    prescription:{patientId}:{id}           prescription
    ai-analysis:{patientId}:{id}            classifier output
    alert:{doctorId}:{id}                   alert (see core.services.alerts)

Every operation takes an explicit RequestContext; patient-scoped operations
first check the patient belongs to the acting doctor.
"""

import uuid
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any, TypeVar

import structlog
from pydantic import BaseModel, ValidationError

from core.domain.errors import InvalidInput, NotFound
from core.domain.models import (
    AnalysisResult,
    DoctorProfile,
    DoctorSettings,
    Measurement,
    Medication,
    Patient,
    Prescription,
    RequestContext,
    StoredMeasurement,
)
from core.services.alerts import AlertManager
from core.services.kv_store import KeyValueStore
from core.services.risk_classifier import classify, ensure_finite

logger = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

# Fields a client may never overwrite on update
_PROTECTED_FIELDS = {"id", "doctor_id", "created_at", "updated_at"}


def _build(model: type[ModelT], **data: Any) -> ModelT:
    """Validate into a domain model, reporting failures as InvalidInput."""
    try:
        return model.model_validate(data)
    except ValidationError as e:
        errors = e.errors(include_url=False, include_context=False, include_input=False)
        raise InvalidInput(f"invalid {model.__name__.lower()}", details={"errors": errors}) from e


def _new_id() -> str:
    return str(uuid.uuid4())


class PatientService:
    def __init__(self, store: KeyValueStore) -> None:
        self.store = store
        self.logger = logger.bind(component="patient_service")

    @staticmethod
    def key(doctor_id: str, patient_id: str) -> str:
        return f"patient:{doctor_id}:{patient_id}"

    async def list_patients(self, ctx: RequestContext, search: str | None = None) -> list[Patient]:
        """Doctor's patients by last name; ``search`` filters on name or email."""
        records = await self.store.scan_prefix(f"patient:{ctx.doctor_id}:")
        patients = [Patient.from_record(r) for r in records]
        if search:
            term = search.strip().lower()
            patients = [
                p for p in patients if term in p.full_name.lower() or term in p.email.lower()
            ]
        return sorted(patients, key=lambda p: (p.last_name.lower(), p.first_name.lower()))

    async def get_patient(self, ctx: RequestContext, patient_id: str) -> Patient:
        record = await self.store.get(self.key(ctx.doctor_id, patient_id))
        if record is None:
            raise NotFound("patient", patient_id)
        return Patient.from_record(record)

    async def create_patient(self, ctx: RequestContext, fields: dict[str, Any]) -> Patient:
        data = {k: v for k, v in fields.items() if k not in _PROTECTED_FIELDS}
        patient = _build(Patient, id=_new_id(), doctor_id=ctx.doctor_id, **data)
        await self.store.set(self.key(ctx.doctor_id, patient.id), patient.to_record())
        self.logger.info("patient_created", patient_id=patient.id, doctor_id=ctx.doctor_id)
        return patient

    async def update_patient(
        self, ctx: RequestContext, patient_id: str, updates: dict[str, Any]
    ) -> Patient:
        existing = await self.get_patient(ctx, patient_id)
        merged = existing.model_dump()
        merged.update({k: v for k, v in updates.items() if k not in _PROTECTED_FIELDS})
        merged["updated_at"] = datetime.now(UTC)

        patient = _build(Patient, **merged)
        await self.store.set(self.key(ctx.doctor_id, patient_id), patient.to_record())
        self.logger.info(
            "patient_updated",
            patient_id=patient_id,
            fields=sorted(set(updates) - _PROTECTED_FIELDS),
        )
        return patient

    async def delete_patient(self, ctx: RequestContext, patient_id: str) -> None:
        deleted = await self.store.delete(self.key(ctx.doctor_id, patient_id))
        if not deleted:
            raise NotFound("patient", patient_id)
        self.logger.info("patient_deleted", patient_id=patient_id)


class SettingsService:
    def __init__(self, store: KeyValueStore) -> None:
        self.store = store

    async def get_settings(self, ctx: RequestContext) -> DoctorSettings:
        record = await self.store.get(f"settings:{ctx.doctor_id}")
        return DoctorSettings.from_record(record) if record else DoctorSettings()

    async def update_settings(
        self, ctx: RequestContext, settings: DoctorSettings
    ) -> DoctorSettings:
        await self.store.set(f"settings:{ctx.doctor_id}", settings.to_record())
        logger.info("settings_updated", doctor_id=ctx.doctor_id)
        return settings


class ProfileService:
    def __init__(self, store: KeyValueStore) -> None:
        self.store = store

    async def get_profile(self, ctx: RequestContext) -> DoctorProfile:
        """Doctors without a stored profile get an empty one rather than a 404."""
        record = await self.store.get(f"user:{ctx.doctor_id}")
        return DoctorProfile.from_record(record) if record else DoctorProfile(id=ctx.doctor_id)

    async def update_profile(self, ctx: RequestContext, updates: dict[str, Any]) -> DoctorProfile:
        current = await self.get_profile(ctx)
        merged = current.model_dump()
        merged.update({k: v for k, v in updates.items() if k not in _PROTECTED_FIELDS})
        profile = _build(DoctorProfile, **merged)
        await self.store.set(f"user:{ctx.doctor_id}", profile.to_record())
        return profile


class MeasurementService:
    def __init__(
        self,
        store: KeyValueStore,
        patients: PatientService,
        settings: SettingsService,
        alerts: AlertManager,
    ) -> None:
        self.store = store
        self.patients = patients
        self.settings = settings
        self.alerts = alerts
        self.logger = logger.bind(component="measurement_service")

    async def record(
        self, ctx: RequestContext, patient_id: str, measurement: Measurement
    ) -> StoredMeasurement:
        """Store one manual reading."""
        return (await self.record_batch(ctx, patient_id, [measurement]))[0]

    async def record_batch(
        self, ctx: RequestContext, patient_id: str, measurements: Sequence[Measurement]
    ) -> list[StoredMeasurement]:
        """Store a recording session. Nothing is written if any reading is invalid."""
        if not measurements:
            raise InvalidInput("measurements must be non-empty")
        for measurement in measurements:
            ensure_finite(measurement)

        patient = await self.patients.get_patient(ctx, patient_id)

        stored = []
        for measurement in measurements:
            item = StoredMeasurement(
                id=_new_id(),
                patient_id=patient_id,
                doctor_id=ctx.doctor_id,
                **measurement.model_dump(),
            )
            await self.store.set(f"measurement:{patient_id}:{item.id}", item.to_record())
            stored.append(item)

        self.logger.info("measurements_recorded", patient_id=patient_id, count=len(stored))

        settings = await self.settings.get_settings(ctx)
        await self.alerts.alert_for_measurements(
            ctx.doctor_id, list(measurements), settings.alert_thresholds, patient=patient
        )
        return stored

    async def list_measurements(
        self, ctx: RequestContext, patient_id: str
    ) -> list[StoredMeasurement]:
        await self.patients.get_patient(ctx, patient_id)
        records = await self.store.scan_prefix(f"measurement:{patient_id}:")
        return sorted(
            (StoredMeasurement.from_record(r) for r in records), key=lambda m: m.timestamp
        )


class PrescriptionService:
    def __init__(
        self, store: KeyValueStore, patients: PatientService, profiles: ProfileService
    ) -> None:
        self.store = store
        self.patients = patients
        self.profiles = profiles
        self.logger = logger.bind(component="prescription_service")

    async def create_prescription(
        self,
        ctx: RequestContext,
        patient_id: str,
        medications: Sequence[Medication],
        notes: str = "",
        date: datetime | None = None,
    ) -> Prescription:
        """
        Author a prescription. Rows without a name or a dosage are dropped;
        at least one complete medication must remain.
        """
        complete = [m for m in medications if m.is_complete]
        if not complete:
            raise InvalidInput("at least one medication with a name and a dosage is required")

        patient = await self.patients.get_patient(ctx, patient_id)
        profile = await self.profiles.get_profile(ctx)

        fields: dict[str, Any] = {
            "id": _new_id(),
            "doctor_id": ctx.doctor_id,
            "patient_id": patient_id,
            "patient_name": patient.full_name,
            "doctor_name": profile.name,
            "doctor_specialty": profile.specialty,
            "medications": complete,
            "notes": notes,
        }
        if date is not None:
            fields["date"] = date
        prescription = _build(Prescription, **fields)

        await self.store.set(
            f"prescription:{patient_id}:{prescription.id}", prescription.to_record()
        )
        self.logger.info(
            "prescription_created",
            prescription_id=prescription.id,
            patient_id=patient_id,
            medications=len(complete),
        )
        return prescription

    async def list_prescriptions(self, ctx: RequestContext, patient_id: str) -> list[Prescription]:
        await self.patients.get_patient(ctx, patient_id)
        records = await self.store.scan_prefix(f"prescription:{patient_id}:")
        return sorted(
            (Prescription.from_record(r) for r in records),
            key=lambda p: p.created_at,
            reverse=True,
        )


class AnalysisService:
    """Runs the risk classifier for a patient and keeps every result."""

    def __init__(
        self,
        store: KeyValueStore,
        patients: PatientService,
        measurements: MeasurementService,
        alerts: AlertManager,
    ) -> None:
        self.store = store
        self.patients = patients
        self.measurements = measurements
        self.alerts = alerts
        self.logger = logger.bind(component="analysis_service")

    async def run_analysis(
        self,
        ctx: RequestContext,
        patient_id: str,
        measurements: Sequence[Measurement] | None = None,
    ) -> AnalysisResult:
        """
        Classify the given readings, or the patient's stored history when none
        are supplied, and persist the result as a new analysis.

        Raises:
            NotFound: the patient is not one of the doctor's.
            InvalidInput: no readings to analyse, or a non-finite reading.
        """
        patient = await self.patients.get_patient(ctx, patient_id)
        if measurements is None:
            measurements = await self.measurements.list_measurements(ctx, patient_id)

        metrics, classification = classify(measurements)

        analysis = AnalysisResult(
            id=_new_id(),
            patient_id=patient_id,
            doctor_id=ctx.doctor_id,
            risk=classification.risk,
            diagnosis=classification.diagnosis,
            confidence=classification.confidence,
            metrics=metrics,
            recommendations=list(classification.recommendations),
        )
        await self.store.set(f"ai-analysis:{patient_id}:{analysis.id}", analysis.to_record())

        self.logger.info(
            "analysis_completed",
            analysis_id=analysis.id,
            patient_id=patient_id,
            risk=analysis.risk.value,
            confidence=analysis.confidence,
            measurements_count=len(measurements),
        )

        await self.alerts.alert_for_analysis(analysis, patient=patient)
        return analysis

    async def list_analyses(self, ctx: RequestContext, patient_id: str) -> list[AnalysisResult]:
        await self.patients.get_patient(ctx, patient_id)
        records = await self.store.scan_prefix(f"ai-analysis:{patient_id}:")
        return sorted(
            (AnalysisResult.from_record(r) for r in records),
            key=lambda a: a.created_at,
            reverse=True,
        )

    async def latest_analysis(self, ctx: RequestContext, patient_id: str) -> AnalysisResult | None:
        analyses = await self.list_analyses(ctx, patient_id)
        return analyses[0] if analyses else None


class MedicalRecords:
    """Wires every record service onto one store."""

    def __init__(self, store: KeyValueStore, alerts: AlertManager | None = None) -> None:
        self.store = store
        self.alerts = alerts or AlertManager(store)
        self.patients = PatientService(store)
        self.settings = SettingsService(store)
        self.profiles = ProfileService(store)
        self.measurements = MeasurementService(store, self.patients, self.settings, self.alerts)
        self.prescriptions = PrescriptionService(store, self.patients, self.profiles)
        self.analyses = AnalysisService(store, self.patients, self.measurements, self.alerts)
