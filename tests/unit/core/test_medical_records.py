"""
Tests for the medical-record services wired by MedicalRecords.

Covers:
- patient CRUD, search and doctor scoping
- settings and profile defaults
- measurement recording (single, batch, rejection before any write)
- prescriptions (incomplete medication rows dropped)
- analyses over supplied readings and over stored history
"""

from __future__ import annotations

import math
from datetime import UTC, datetime, timedelta

import pytest

from core.domain.errors import InvalidInput, NotFound
from core.domain.models import (
    AlertThresholds,
    AlertType,
    DoctorSettings,
    Measurement,
    Medication,
    Patient,
    RequestContext,
    RiskLevel,
)
from core.services.kv_store import InMemoryKeyValueStore
from core.services.medical_records import MedicalRecords

DOC = RequestContext(doctor_id="doc-1")
OTHER_DOC = RequestContext(doctor_id="doc-2")

HEALTHY = Measurement(pressure=80.0, temperature=34.0, emg=60.0)


@pytest.fixture
def store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def records(store: InMemoryKeyValueStore) -> MedicalRecords:
    return MedicalRecords(store)


@pytest.fixture
async def patient(records: MedicalRecords) -> Patient:
    return await records.patients.create_patient(
        DOC, {"first_name": "Marie", "last_name": "Durand", "email": "marie@example.org"}
    )


class TestPatients:
    async def test_create_assigns_identity(self, records: MedicalRecords, patient: Patient) -> None:
        assert patient.doctor_id == "doc-1"
        assert patient.id
        assert await records.patients.get_patient(DOC, patient.id) == patient

    async def test_client_cannot_choose_id_or_owner(self, records: MedicalRecords) -> None:
        created = await records.patients.create_patient(
            DOC, {"id": "mine", "doctor_id": "doc-2", "first_name": "A", "last_name": "B"}
        )

        assert created.id != "mine"
        assert created.doctor_id == "doc-1"

    async def test_missing_name_is_invalid(self, records: MedicalRecords) -> None:
        with pytest.raises(InvalidInput) as excinfo:
            await records.patients.create_patient(DOC, {"first_name": "", "last_name": "B"})

        assert excinfo.value.details["errors"]

    async def test_other_doctor_cannot_see_patient(
        self, records: MedicalRecords, patient: Patient
    ) -> None:
        with pytest.raises(NotFound):
            await records.patients.get_patient(OTHER_DOC, patient.id)
        assert await records.patients.list_patients(OTHER_DOC) == []

    async def test_list_sorted_and_searchable(self, records: MedicalRecords) -> None:
        for first, last in [("Paul", "Zola"), ("Anne", "Bernard"), ("Luc", "Bernard")]:
            await records.patients.create_patient(DOC, {"first_name": first, "last_name": last})

        names = [p.full_name for p in await records.patients.list_patients(DOC)]
        assert names == ["Anne Bernard", "Luc Bernard", "Paul Zola"]

        found = await records.patients.list_patients(DOC, search="ZOL")
        assert [p.last_name for p in found] == ["Zola"]

    async def test_update_merges_fields(self, records: MedicalRecords, patient: Patient) -> None:
        updated = await records.patients.update_patient(
            DOC, patient.id, {"diagnosis": "Type 2 diabetes", "id": "hijack"}
        )

        assert updated.id == patient.id
        assert updated.first_name == "Marie"
        assert updated.diagnosis == "Type 2 diabetes"
        assert updated.updated_at >= patient.updated_at
        assert updated.created_at == patient.created_at

    async def test_delete(self, records: MedicalRecords, patient: Patient) -> None:
        await records.patients.delete_patient(DOC, patient.id)

        with pytest.raises(NotFound):
            await records.patients.get_patient(DOC, patient.id)
        with pytest.raises(NotFound):
            await records.patients.delete_patient(DOC, patient.id)


class TestSettingsAndProfile:
    async def test_settings_default_until_saved(self, records: MedicalRecords) -> None:
        settings = await records.settings.get_settings(DOC)

        assert settings.theme == "light"
        assert settings.glove_connection_mode == "bluetooth"
        assert settings.measurement_frequency == 1000
        assert settings.alert_thresholds == AlertThresholds(pressure=50, temperature=30, emg=20)

    async def test_settings_roundtrip_per_doctor(self, records: MedicalRecords) -> None:
        custom = DoctorSettings(theme="dark", alert_thresholds=AlertThresholds(pressure=60))
        await records.settings.update_settings(DOC, custom)

        assert await records.settings.get_settings(DOC) == custom
        assert (await records.settings.get_settings(OTHER_DOC)).theme == "light"

    async def test_profile_defaults_then_merges(self, records: MedicalRecords) -> None:
        assert (await records.profiles.get_profile(DOC)).id == "doc-1"

        await records.profiles.update_profile(DOC, {"name": "Dr. Martin"})
        profile = await records.profiles.update_profile(DOC, {"specialty": "Endocrinology"})

        assert profile.name == "Dr. Martin"
        assert profile.specialty == "Endocrinology"
        assert profile.id == "doc-1"


class TestMeasurements:
    async def test_record_and_list_in_time_order(
        self, records: MedicalRecords, patient: Patient
    ) -> None:
        later = datetime(2026, 3, 1, 9, 30, tzinfo=UTC)
        earlier = later - timedelta(minutes=5)
        second = await records.measurements.record(
            DOC, patient.id, Measurement(timestamp=later, pressure=75.0, temperature=33.0, emg=55.0)
        )
        first = await records.measurements.record(
            DOC, patient.id, HEALTHY.model_copy(update={"timestamp": earlier})
        )

        listed = await records.measurements.list_measurements(DOC, patient.id)

        assert [m.id for m in listed] == [first.id, second.id]
        assert listed[0].patient_id == patient.id
        assert listed[0].doctor_id == "doc-1"

    async def test_unknown_patient_rejected(self, records: MedicalRecords) -> None:
        with pytest.raises(NotFound):
            await records.measurements.record(DOC, "ghost", HEALTHY)

    async def test_empty_batch_rejected(self, records: MedicalRecords, patient: Patient) -> None:
        with pytest.raises(InvalidInput):
            await records.measurements.record_batch(DOC, patient.id, [])

    async def test_non_finite_batch_writes_nothing(
        self, records: MedicalRecords, store: InMemoryKeyValueStore, patient: Patient
    ) -> None:
        before = len(store)
        bad = Measurement(pressure=math.nan, temperature=34.0, emg=60.0)

        with pytest.raises(InvalidInput, match="finite"):
            await records.measurements.record_batch(DOC, patient.id, [HEALTHY, bad])

        assert len(store) == before

    async def test_reading_below_threshold_raises_alert(
        self, records: MedicalRecords, patient: Patient
    ) -> None:
        await records.measurements.record(
            DOC, patient.id, Measurement(pressure=42.0, temperature=34.0, emg=60.0)
        )

        alerts = await records.alerts.list_alerts("doc-1")
        assert len(alerts) == 1
        assert alerts[0].type == AlertType.WARNING
        assert alerts[0].patient_name == "Marie Durand"

    async def test_thresholds_follow_doctor_settings(
        self, records: MedicalRecords, patient: Patient
    ) -> None:
        await records.settings.update_settings(
            DOC, DoctorSettings(alert_thresholds=AlertThresholds(pressure=90.0))
        )

        await records.measurements.record(DOC, patient.id, HEALTHY)

        assert await records.alerts.unread_count("doc-1") == 1


class TestPrescriptions:
    async def test_incomplete_rows_dropped(self, records: MedicalRecords, patient: Patient) -> None:
        await records.profiles.update_profile(
            DOC, {"name": "Dr. Martin", "specialty": "Diabetology"}
        )

        prescription = await records.prescriptions.create_prescription(
            DOC,
            patient.id,
            [
                Medication(name="Pregabalin", dosage="75 mg", frequency="2x/day"),
                Medication(name="Vitamin B12"),
                Medication(dosage="500 mg"),
            ],
            notes="Review in 4 weeks",
        )

        assert [m.name for m in prescription.medications] == ["Pregabalin"]
        assert prescription.patient_name == "Marie Durand"
        assert prescription.doctor_name == "Dr. Martin"
        assert prescription.doctor_specialty == "Diabetology"

    async def test_no_complete_medication_rejected(
        self, records: MedicalRecords, patient: Patient
    ) -> None:
        with pytest.raises(InvalidInput, match="at least one medication"):
            await records.prescriptions.create_prescription(
                DOC, patient.id, [Medication(name="  ", dosage="1 mg")]
            )

    async def test_listed_newest_first(self, records: MedicalRecords, patient: Patient) -> None:
        meds = [Medication(name="Metformin", dosage="500 mg")]
        first = await records.prescriptions.create_prescription(DOC, patient.id, meds)
        second = await records.prescriptions.create_prescription(DOC, patient.id, meds)

        listed = await records.prescriptions.list_prescriptions(DOC, patient.id)

        assert {p.id for p in listed} == {first.id, second.id}
        assert listed[0].created_at >= listed[1].created_at


class TestAnalyses:
    async def test_supplied_readings_classified_and_stored(
        self, records: MedicalRecords, patient: Patient
    ) -> None:
        readings = [
            Measurement(pressure=45.0, temperature=34.0, emg=60.0),
            Measurement(pressure=55.0, temperature=34.0, emg=60.0),
        ]

        analysis = await records.analyses.run_analysis(DOC, patient.id, readings)

        assert analysis.risk == RiskLevel.MODERATE
        assert analysis.metrics.avg_pressure == 50.0
        assert analysis.confidence == 0.78
        assert await records.analyses.latest_analysis(DOC, patient.id) == analysis
        # analysing supplied readings does not store them
        assert await records.measurements.list_measurements(DOC, patient.id) == []

    async def test_stored_history_used_when_none_supplied(
        self, records: MedicalRecords, patient: Patient
    ) -> None:
        await records.measurements.record_batch(DOC, patient.id, [HEALTHY, HEALTHY])

        analysis = await records.analyses.run_analysis(DOC, patient.id)

        assert analysis.risk == RiskLevel.LOW
        assert analysis.diagnosis == "Normal"
        assert analysis.recommendations == ["Continue routine follow-up"]

    async def test_history_mixing_naive_and_aware_timestamps(
        self, records: MedicalRecords, patient: Patient
    ) -> None:
        aware = Measurement(
            timestamp=datetime(2024, 5, 1, 10, 5, tzinfo=UTC),
            pressure=80.0,
            temperature=34.0,
            emg=60.0,
        )
        naive = Measurement.model_validate(
            {"timestamp": "2024-05-01T10:00:00", "pressure": 40.0, "temperature": 34.0, "emg": 60.0}
        )
        await records.measurements.record(DOC, patient.id, aware)
        await records.measurements.record(DOC, patient.id, naive)

        history = await records.measurements.list_measurements(DOC, patient.id)
        analysis = await records.analyses.run_analysis(DOC, patient.id)

        assert [m.timestamp for m in history] == [
            datetime(2024, 5, 1, 10, 0, tzinfo=UTC),
            datetime(2024, 5, 1, 10, 5, tzinfo=UTC),
        ]
        assert analysis.metrics.avg_pressure == 60.0
        assert analysis.risk == RiskLevel.MODERATE

    async def test_no_history_is_invalid(self, records: MedicalRecords, patient: Patient) -> None:
        with pytest.raises(InvalidInput, match="non-empty"):
            await records.analyses.run_analysis(DOC, patient.id)
        assert await records.analyses.list_analyses(DOC, patient.id) == []

    async def test_high_risk_analysis_raises_error_alert(
        self, records: MedicalRecords, patient: Patient
    ) -> None:
        await records.analyses.run_analysis(
            DOC, patient.id, [Measurement(pressure=80.0, temperature=29.0, emg=60.0)]
        )

        alerts = await records.alerts.list_alerts("doc-1")
        assert [a.type for a in alerts] == [AlertType.ERROR]
        assert alerts[0].title == "High neuropathy risk"

    async def test_analysis_for_other_doctors_patient_not_found(
        self, records: MedicalRecords, patient: Patient
    ) -> None:
        with pytest.raises(NotFound):
            await records.analyses.run_analysis(OTHER_DOC, patient.id, [HEALTHY])

    async def test_latest_analysis_none_without_history(
        self, records: MedicalRecords, patient: Patient
    ) -> None:
        assert await records.analyses.latest_analysis(DOC, patient.id) is None
