"""
Alert management: doctor-scoped notifications.

Alerts are created explicitly by clients or derived from clinical events:
- an analysis classified high or moderate
- a single reading below the doctor's configured thresholds
"""

import uuid
from collections.abc import Callable
from typing import Any

import structlog

from core.domain.errors import InvalidInput, NotFound
from core.domain.models import (
    Alert,
    AlertThresholds,
    AlertType,
    AnalysisResult,
    Measurement,
    Patient,
    RiskLevel,
)
from core.services.kv_store import KeyValueStore

logger = structlog.get_logger(__name__)

AlertHandler = Callable[[Alert], None]

_RISK_ALERT_TYPES = {RiskLevel.HIGH: AlertType.ERROR, RiskLevel.MODERATE: AlertType.WARNING}


def alert_key(doctor_id: str, alert_id: str) -> str:
    return f"alert:{doctor_id}:{alert_id}"


def breached_channels(measurement: Measurement, thresholds: AlertThresholds) -> list[str]:
    """Channels strictly below their floor, in a fixed order."""
    breached = []
    if measurement.pressure < thresholds.pressure:
        breached.append("pressure")
    if measurement.temperature < thresholds.temperature:
        breached.append("temperature")
    if measurement.emg < thresholds.emg:
        breached.append("emg")
    return breached


class AlertManager:
    """Creates, lists and acknowledges alerts, and dispatches new ones to handlers."""

    def __init__(self, store: KeyValueStore, handlers: list[AlertHandler] | None = None) -> None:
        self.store = store
        self.handlers = handlers or []
        self.logger = logger.bind(component="alert_manager")

    async def create_alert(
        self,
        doctor_id: str,
        title: str,
        message: str = "",
        alert_type: AlertType = AlertType.INFO,
        patient: Patient | None = None,
        patient_id: str | None = None,
        patient_name: str | None = None,
    ) -> Alert:
        if not title.strip():
            raise InvalidInput("alert title must not be empty")

        alert = Alert(
            id=str(uuid.uuid4()),
            doctor_id=doctor_id,
            type=alert_type,
            title=title,
            message=message,
            patient_id=patient.id if patient else patient_id,
            patient_name=patient.full_name if patient else patient_name,
        )
        await self.store.set(alert_key(doctor_id, alert.id), alert.to_record())

        self.logger.info(
            "alert_created",
            alert_id=alert.id,
            alert_type=alert.type.value,
            patient_id=alert.patient_id,
        )
        self._dispatch(alert)
        return alert

    async def list_alerts(self, doctor_id: str, unread_only: bool = False) -> list[Alert]:
        records = await self.store.scan_prefix(f"alert:{doctor_id}:")
        alerts = [Alert.from_record(r) for r in records]
        if unread_only:
            alerts = [a for a in alerts if not a.read]
        return sorted(alerts, key=lambda a: a.created_at, reverse=True)

    async def unread_count(self, doctor_id: str) -> int:
        return len(await self.list_alerts(doctor_id, unread_only=True))

    async def mark_read(self, doctor_id: str, alert_id: str) -> Alert:
        key = alert_key(doctor_id, alert_id)
        record = await self.store.get(key)
        if record is None:
            raise NotFound("alert", alert_id)

        alert = Alert.from_record(record).model_copy(update={"read": True})
        await self.store.set(key, alert.to_record())
        self.logger.info("alert_marked_read", alert_id=alert_id)
        return alert

    async def alert_for_analysis(
        self, analysis: AnalysisResult, patient: Patient | None = None
    ) -> Alert | None:
        """High risk raises an error alert, moderate a warning; low risk stays quiet."""
        alert_type = _RISK_ALERT_TYPES.get(analysis.risk)
        if alert_type is None:
            return None

        return await self.create_alert(
            doctor_id=analysis.doctor_id,
            title=f"{analysis.risk.value.capitalize()} neuropathy risk",
            message=(
                f"{analysis.diagnosis} (confidence {analysis.confidence:.0%}). "
                f"{' '.join(r + '.' for r in analysis.recommendations)}"
            ),
            alert_type=alert_type,
            patient=patient,
            patient_id=analysis.patient_id,
        )

    async def alert_for_measurements(
        self,
        doctor_id: str,
        measurements: list[Measurement],
        thresholds: AlertThresholds,
        patient: Patient | None = None,
        patient_id: str | None = None,
    ) -> Alert | None:
        """One warning per batch, naming every channel that dipped below its floor."""
        breaching = [(m, breached_channels(m, thresholds)) for m in measurements]
        breaching = [(m, channels) for m, channels in breaching if channels]
        if not breaching:
            return None

        if len(measurements) == 1:
            measurement, channels = breaching[0]
            values: dict[str, Any] = {
                name: round(getattr(measurement, name), 1) for name in channels
            }
            message = ", ".join(f"{name}={value}" for name, value in values.items())
        else:
            channels = sorted({name for _, names in breaching for name in names})
            message = (
                f"{len(breaching)} of {len(measurements)} readings below threshold "
                f"({', '.join(channels)})"
            )

        return await self.create_alert(
            doctor_id=doctor_id,
            title="Reading below alert threshold",
            message=message,
            alert_type=AlertType.WARNING,
            patient=patient,
            patient_id=patient_id,
        )

    def _dispatch(self, alert: Alert) -> None:
        for handler in self.handlers:
            try:
                handler(alert)
            except Exception as e:
                self.logger.error("alert_dispatch_failed", error=str(e), alert_id=alert.id)
