"""
Tests for AlertManager.

Covers:
- explicit alert creation, listing order and read acknowledgement
- alerts derived from analyses (per risk tier)
- alerts derived from readings below the doctor's thresholds
- handler dispatch, including a failing handler
"""

from __future__ import annotations

import pytest

from core.domain.errors import InvalidInput, NotFound
from core.domain.models import (
    AggregateMetrics,
    Alert,
    AlertThresholds,
    AlertType,
    AnalysisResult,
    Measurement,
    Patient,
    RiskLevel,
)
from core.services.alerts import AlertManager, breached_channels
from core.services.kv_store import InMemoryKeyValueStore

THRESHOLDS = AlertThresholds()
PATIENT = Patient(id="p-1", doctor_id="doc-1", first_name="Marie", last_name="Durand")


def _analysis(risk: RiskLevel, confidence: float = 0.87) -> AnalysisResult:
    return AnalysisResult(
        id="a-1",
        patient_id="p-1",
        doctor_id="doc-1",
        risk=risk,
        diagnosis="Suspected diabetic neuropathy",
        confidence=confidence,
        metrics=AggregateMetrics(avg_pressure=40.0, avg_temperature=34.0, avg_emg=60.0),
        recommendations=["Specialist consultation recommended"],
    )


@pytest.fixture
def manager() -> AlertManager:
    return AlertManager(InMemoryKeyValueStore())


class TestExplicitAlerts:
    async def test_create_and_list(self, manager: AlertManager) -> None:
        alert = await manager.create_alert("doc-1", "Glove disconnected", "Battery low")

        alerts = await manager.list_alerts("doc-1")

        assert alerts == [alert]
        assert alert.type == AlertType.INFO
        assert alert.read is False

    async def test_alerts_are_scoped_per_doctor(self, manager: AlertManager) -> None:
        await manager.create_alert("doc-1", "For doc 1")
        await manager.create_alert("doc-2", "For doc 2")

        assert [a.title for a in await manager.list_alerts("doc-1")] == ["For doc 1"]

    async def test_newest_first(self, manager: AlertManager) -> None:
        first = await manager.create_alert("doc-1", "first")
        second = await manager.create_alert("doc-1", "second")

        alerts = await manager.list_alerts("doc-1")

        assert alerts[0].created_at >= alerts[1].created_at
        assert {a.id for a in alerts} == {first.id, second.id}

    async def test_blank_title_rejected(self, manager: AlertManager) -> None:
        with pytest.raises(InvalidInput, match="title"):
            await manager.create_alert("doc-1", "   ")

    async def test_mark_read_updates_unread_count(self, manager: AlertManager) -> None:
        alert = await manager.create_alert("doc-1", "Check glove")
        await manager.create_alert("doc-1", "Second")
        assert await manager.unread_count("doc-1") == 2

        updated = await manager.mark_read("doc-1", alert.id)

        assert updated.read is True
        assert await manager.unread_count("doc-1") == 1
        assert [a.title for a in await manager.list_alerts("doc-1", unread_only=True)] == [
            "Second"
        ]

    async def test_mark_read_of_other_doctors_alert_is_not_found(
        self, manager: AlertManager
    ) -> None:
        alert = await manager.create_alert("doc-1", "Private")

        with pytest.raises(NotFound) as excinfo:
            await manager.mark_read("doc-2", alert.id)

        assert excinfo.value.kind == "alert"

    async def test_patient_fills_name(self, manager: AlertManager) -> None:
        alert = await manager.create_alert("doc-1", "Follow-up", patient=PATIENT)

        assert alert.patient_id == "p-1"
        assert alert.patient_name == "Marie Durand"


class TestAnalysisAlerts:
    async def test_high_risk_raises_error_alert(self, manager: AlertManager) -> None:
        alert = await manager.alert_for_analysis(_analysis(RiskLevel.HIGH), patient=PATIENT)

        assert alert is not None
        assert alert.type == AlertType.ERROR
        assert alert.title == "High neuropathy risk"
        assert "confidence 87%" in alert.message
        assert alert.patient_name == "Marie Durand"

    async def test_moderate_risk_raises_warning(self, manager: AlertManager) -> None:
        alert = await manager.alert_for_analysis(_analysis(RiskLevel.MODERATE, 0.78))

        assert alert is not None
        assert alert.type == AlertType.WARNING
        assert alert.patient_id == "p-1"

    async def test_low_risk_stays_quiet(self, manager: AlertManager) -> None:
        assert await manager.alert_for_analysis(_analysis(RiskLevel.LOW, 0.95)) is None
        assert await manager.list_alerts("doc-1") == []


class TestMeasurementAlerts:
    def test_breached_channels_are_strict(self) -> None:
        on_floor = Measurement(pressure=50.0, temperature=30.0, emg=20.0)
        below = Measurement(pressure=49.9, temperature=29.9, emg=19.9)

        assert breached_channels(on_floor, THRESHOLDS) == []
        assert breached_channels(below, THRESHOLDS) == ["pressure", "temperature", "emg"]

    async def test_single_reading_names_values(self, manager: AlertManager) -> None:
        reading = Measurement(pressure=40.0, temperature=34.0, emg=15.04)

        alert = await manager.alert_for_measurements("doc-1", [reading], THRESHOLDS)

        assert alert is not None
        assert alert.type == AlertType.WARNING
        assert alert.message == "pressure=40.0, emg=15.0"

    async def test_batch_produces_one_summary_alert(self, manager: AlertManager) -> None:
        readings = [
            Measurement(pressure=80.0, temperature=34.0, emg=60.0),
            Measurement(pressure=45.0, temperature=34.0, emg=60.0),
            Measurement(pressure=80.0, temperature=28.0, emg=60.0),
        ]

        alert = await manager.alert_for_measurements(
            "doc-1", readings, THRESHOLDS, patient_id="p-9"
        )

        assert alert is not None
        assert alert.message == "2 of 3 readings below threshold (pressure, temperature)"
        assert alert.patient_id == "p-9"
        assert len(await manager.list_alerts("doc-1")) == 1

    async def test_custom_thresholds(self, manager: AlertManager) -> None:
        reading = Measurement(pressure=80.0, temperature=34.0, emg=60.0)

        assert await manager.alert_for_measurements("doc-1", [reading], THRESHOLDS) is None
        alert = await manager.alert_for_measurements(
            "doc-1", [reading], AlertThresholds(pressure=90.0)
        )
        assert alert is not None
        assert alert.message == "pressure=80.0"


class TestDispatch:
    async def test_handlers_receive_new_alerts(self) -> None:
        received: list[Alert] = []
        manager = AlertManager(InMemoryKeyValueStore(), handlers=[received.append])

        alert = await manager.create_alert("doc-1", "Ping")

        assert received == [alert]

    async def test_failing_handler_does_not_block_others(self) -> None:
        received: list[Alert] = []

        def broken(alert: Alert) -> None:
            raise RuntimeError("pager offline")

        manager = AlertManager(InMemoryKeyValueStore(), handlers=[broken, received.append])

        alert = await manager.create_alert("doc-1", "Ping")

        assert received == [alert]
        assert await manager.list_alerts("doc-1") == [alert]
