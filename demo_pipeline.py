"""
End-to-end walkthrough of the screening pipeline against an in-memory store.

This script exercises:
1. Configuration loading
2. A simulated glove recording session
3. Risk classification of the recorded session and of reference scenarios
4. Alerts derived from the analyses

Run with: python demo_pipeline.py
"""

import asyncio
import random

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from core.config import AppConfig, DatabaseConfig, GloveConfig, print_config_summary
from core.domain.errors import InvalidInput
from core.domain.models import Measurement, RequestContext
from core.services.glove_source import GloveRecorder, GloveRecorderConfig, SimulatedGloveSource
from core.services.kv_store import InMemoryKeyValueStore
from core.services.medical_records import MedicalRecords

console = Console()

DOCTOR = RequestContext(doctor_id="demo-doctor")

# (label, [(pressure, temperature, emg), ...])
SCENARIOS: list[tuple[str, list[tuple[float, float, float]]]] = [
    ("All channels healthy", [(80, 34, 60)]),
    ("Pressure mean exactly 50", [(45, 34, 60), (55, 34, 60)]),
    ("Low pressure", [(40, 34, 60)]),
    ("Cold skin only", [(80, 29, 60)]),
    ("Weak EMG", [(85, 35, 35), (90, 35, 38)]),
]

RISK_STYLES = {"low": "green", "moderate": "yellow", "high": "red"}


def demo_config() -> AppConfig:
    return AppConfig(
        environment="development",
        database=DatabaseConfig(backend="memory"),
        glove=GloveConfig(sample_interval_seconds=0.0, failure_rate=0.05),
    )


async def check_recording_session(records: MedicalRecords, config: AppConfig) -> bool:
    console.print(Panel("Simulated glove session", style="blue"))

    patient = await records.patients.create_patient(
        DOCTOR, {"first_name": "Marie", "last_name": "Durand", "email": "marie@example.org"}
    )
    recorder = GloveRecorder(
        SimulatedGloveSource(failure_rate=config.glove.failure_rate, rng=random.Random(7)),
        GloveRecorderConfig(
            sample_interval_seconds=config.glove.sample_interval_seconds,
            buffer_size=config.glove.buffer_size,
        ),
    )
    readings = await recorder.record_batch(30)
    await records.measurements.record_batch(DOCTOR, patient.id, readings)

    table = Table(title=f"Last {len(readings)} readings ({recorder.failed_reads} dropped)")
    table.add_column("Time", style="cyan")
    table.add_column("Pressure (mmHg)", justify="right")
    table.add_column("Temperature (°C)", justify="right")
    table.add_column("EMG (µV)", justify="right")
    for m in readings[-5:]:
        table.add_row(
            m.timestamp.strftime("%H:%M:%S.%f")[:-3],
            f"{m.pressure:.1f}",
            f"{m.temperature:.1f}",
            f"{m.emg:.1f}",
        )
    console.print(table)

    analysis = await records.analyses.run_analysis(DOCTOR, patient.id)
    style = RISK_STYLES[analysis.risk.value]
    console.print(
        f"Session analysis: [{style}]{analysis.risk.value.upper()}[/{style}] "
        f"({analysis.diagnosis}, confidence {analysis.confidence:.0%})"
    )
    return True


async def check_reference_scenarios(records: MedicalRecords) -> bool:
    console.print(Panel("Reference scenarios", style="blue"))

    patient = await records.patients.create_patient(
        DOCTOR, {"first_name": "Jean", "last_name": "Martin"}
    )

    table = Table(title="Classifier output")
    table.add_column("Scenario", style="cyan")
    table.add_column("Means (P / T / EMG)")
    table.add_column("Risk")
    table.add_column("Confidence", justify="right")
    table.add_column("Recommendations")

    for label, rows in SCENARIOS:
        measurements = [Measurement(pressure=p, temperature=t, emg=e) for p, t, e in rows]
        analysis = await records.analyses.run_analysis(DOCTOR, patient.id, measurements)
        m = analysis.metrics
        style = RISK_STYLES[analysis.risk.value]
        table.add_row(
            label,
            f"{m.avg_pressure:.1f} / {m.avg_temperature:.1f} / {m.avg_emg:.1f}",
            f"[{style}]{analysis.risk.value}[/{style}]",
            f"{analysis.confidence:.2f}",
            "; ".join(analysis.recommendations),
        )
    console.print(table)

    try:
        await records.analyses.run_analysis(DOCTOR, patient.id, [])
    except InvalidInput as e:
        console.print(f"Empty batch rejected: {e.message}", style="green")
    else:
        console.print("Empty batch was accepted", style="red")
        return False
    return True


async def check_alerts(records: MedicalRecords) -> bool:
    console.print(Panel("Alerts", style="blue"))

    alerts = await records.alerts.list_alerts(DOCTOR.doctor_id)
    table = Table(title=f"{len(alerts)} alerts")
    table.add_column("Type")
    table.add_column("Patient", style="cyan")
    table.add_column("Title")
    table.add_column("Message")
    for alert in alerts:
        table.add_row(alert.type.value, alert.patient_name or "-", alert.title, alert.message)
    console.print(table)
    return bool(alerts)


async def run_demo() -> None:
    console.print(Panel("Glove Neuropathy Monitor - pipeline demo", style="bold blue"))

    config = demo_config()
    print_config_summary(config)
    records = MedicalRecords(InMemoryKeyValueStore())

    steps = [
        ("Recording session", check_recording_session(records, config)),
        ("Reference scenarios", check_reference_scenarios(records)),
        ("Alerts", check_alerts(records)),
    ]

    results = []
    for name, step in steps:
        console.print(f"\n{'=' * 60}")
        try:
            results.append((name, await step))
        except Exception as e:
            console.print(f"{name} failed with exception: {e}", style="red")
            results.append((name, False))

    summary = Table(title="Summary")
    summary.add_column("Step", style="cyan")
    summary.add_column("Result")
    for name, ok in results:
        summary.add_row(name, "[green]PASS[/green]" if ok else "[red]FAIL[/red]")
    console.print(summary)


if __name__ == "__main__":
    asyncio.run(run_demo())
