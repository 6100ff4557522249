"""
REST API for the glove neuropathy monitor.

All routes live under /api/v1 and, apart from /health, require an API key.
Handlers stay thin: resolve the RequestContext, call a record service, wrap
the result in the JSON envelope the web client expects.
"""

from contextlib import asynccontextmanager
from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from adapters.api.auth import Authenticator, StaticKeyAuthenticator, extract_api_key
from adapters.api.schemas import (
    AlertCreate,
    AnalysisRequest,
    MeasurementCreate,
    PatientCreate,
    PatientUpdate,
    PrescriptionCreate,
    ProfileUpdate,
    SimulatedSessionRequest,
)
from core.config import AppConfig, get_config
from core.domain.errors import (
    InvalidInput,
    MedicalRecordError,
    NotFound,
    StorageError,
    Unauthorized,
)
from core.domain.models import DoctorSettings, Measurement, RequestContext
from core.logging_setup import configure_logging
from core.services.glove_source import GloveRecorder, GloveRecorderConfig, SimulatedGloveSource
from core.services.kv_store import KeyValueStore, create_store
from core.services.medical_records import MedicalRecords

logger = structlog.get_logger(__name__)

API_VERSION = "1.0.0"

_STATUS_CODES: dict[type[MedicalRecordError], int] = {
    InvalidInput: 422,
    NotFound: 404,
    Unauthorized: 401,
    StorageError: 503,
}


def status_code_for(error: MedicalRecordError) -> int:
    for error_type, status_code in _STATUS_CODES.items():
        if isinstance(error, error_type):
            return status_code
    return 500


def get_records(request: Request) -> MedicalRecords:
    return request.app.state.records


def get_context(request: Request) -> RequestContext:
    """Resolve the calling doctor; raises Unauthorized, mapped to 401."""
    authenticator: Authenticator = request.app.state.authenticator
    header_name = request.app.state.config.api.api_key_header
    return authenticator.authenticate(extract_api_key(request, header_name))


Records = Annotated[MedicalRecords, Depends(get_records)]
Context = Annotated[RequestContext, Depends(get_context)]

router = APIRouter(prefix="/api/v1", dependencies=[Depends(get_context)])


# ---- Profile & settings ----


@router.get("/profile", tags=["Doctor"])
async def get_profile(records: Records, ctx: Context) -> dict[str, Any]:
    profile = await records.profiles.get_profile(ctx)
    return {"profile": profile.to_record()}


@router.put("/profile", tags=["Doctor"])
async def update_profile(body: ProfileUpdate, records: Records, ctx: Context) -> dict[str, Any]:
    profile = await records.profiles.update_profile(ctx, body.model_dump(exclude_none=True))
    return {"success": True, "profile": profile.to_record()}


@router.get("/settings", tags=["Doctor"])
async def get_settings(records: Records, ctx: Context) -> dict[str, Any]:
    settings = await records.settings.get_settings(ctx)
    return {"settings": settings.to_record()}


@router.put("/settings", tags=["Doctor"])
async def update_settings(body: DoctorSettings, records: Records, ctx: Context) -> dict[str, Any]:
    settings = await records.settings.update_settings(ctx, body)
    return {"success": True, "settings": settings.to_record()}


# ---- Patients ----


@router.get("/patients", tags=["Patients"])
async def list_patients(
    records: Records, ctx: Context, search: str | None = Query(default=None)
) -> dict[str, Any]:
    patients = await records.patients.list_patients(ctx, search=search)
    return {"patients": [p.to_record() for p in patients]}


@router.post("/patients", tags=["Patients"])
async def create_patient(body: PatientCreate, records: Records, ctx: Context) -> dict[str, Any]:
    patient = await records.patients.create_patient(ctx, body.model_dump())
    return {"success": True, "patient": patient.to_record()}


@router.get("/patients/{patient_id}", tags=["Patients"])
async def get_patient(patient_id: str, records: Records, ctx: Context) -> dict[str, Any]:
    patient = await records.patients.get_patient(ctx, patient_id)
    return {"patient": patient.to_record()}


@router.put("/patients/{patient_id}", tags=["Patients"])
async def update_patient(
    patient_id: str, body: PatientUpdate, records: Records, ctx: Context
) -> dict[str, Any]:
    patient = await records.patients.update_patient(
        ctx, patient_id, body.model_dump(exclude_unset=True, exclude_none=True)
    )
    return {"success": True, "patient": patient.to_record()}


@router.delete("/patients/{patient_id}", tags=["Patients"])
async def delete_patient(patient_id: str, records: Records, ctx: Context) -> dict[str, Any]:
    await records.patients.delete_patient(ctx, patient_id)
    return {"success": True}


# ---- Measurements ----


@router.post("/measurements", tags=["Measurements"])
async def record_measurement(
    body: MeasurementCreate, records: Records, ctx: Context
) -> dict[str, Any]:
    measurement = Measurement(
        timestamp=body.timestamp,
        pressure=body.pressure,
        temperature=body.temperature,
        emg=body.emg,
    )
    stored = await records.measurements.record(ctx, body.patient_id, measurement)
    return {"success": True, "measurement": stored.to_record()}


@router.post("/measurements/simulate", tags=["Measurements"])
async def record_simulated_session(
    body: SimulatedSessionRequest, request: Request, records: Records, ctx: Context
) -> dict[str, Any]:
    """Run a simulated glove session and store the buffered readings."""
    glove = request.app.state.config.glove
    if body.samples > glove.max_samples:
        raise InvalidInput(
            f"at most {glove.max_samples} samples per session", details={"samples": body.samples}
        )

    # fail before spending the session time on an unknown patient
    await records.patients.get_patient(ctx, body.patient_id)

    recorder = GloveRecorder(
        SimulatedGloveSource(failure_rate=glove.failure_rate),
        GloveRecorderConfig(
            sample_interval_seconds=glove.sample_interval_seconds,
            buffer_size=glove.buffer_size,
        ),
    )
    readings = await recorder.record_batch(body.samples)
    stored = await records.measurements.record_batch(ctx, body.patient_id, readings)
    return {
        "success": True,
        "measurements": [m.to_record() for m in stored],
        "failedReads": recorder.failed_reads,
    }


@router.get("/measurements/{patient_id}", tags=["Measurements"])
async def list_measurements(patient_id: str, records: Records, ctx: Context) -> dict[str, Any]:
    measurements = await records.measurements.list_measurements(ctx, patient_id)
    return {"measurements": [m.to_record() for m in measurements]}


# ---- Prescriptions ----


@router.post("/prescriptions", tags=["Prescriptions"])
async def create_prescription(
    body: PrescriptionCreate, records: Records, ctx: Context
) -> dict[str, Any]:
    prescription = await records.prescriptions.create_prescription(
        ctx, body.patient_id, body.medications, notes=body.notes, date=body.date
    )
    return {"success": True, "prescription": prescription.to_record()}


@router.get("/prescriptions/{patient_id}", tags=["Prescriptions"])
async def list_prescriptions(patient_id: str, records: Records, ctx: Context) -> dict[str, Any]:
    prescriptions = await records.prescriptions.list_prescriptions(ctx, patient_id)
    return {"prescriptions": [p.to_record() for p in prescriptions]}


# ---- AI analysis ----


@router.post("/ai-analysis", tags=["Analysis"])
async def run_analysis(body: AnalysisRequest, records: Records, ctx: Context) -> dict[str, Any]:
    analysis = await records.analyses.run_analysis(ctx, body.patient_id, body.measurements)
    return {"success": True, "analysis": analysis.to_record()}


@router.get("/ai-analysis/{patient_id}", tags=["Analysis"])
async def list_analyses(patient_id: str, records: Records, ctx: Context) -> dict[str, Any]:
    analyses = await records.analyses.list_analyses(ctx, patient_id)
    return {"analyses": [a.to_record() for a in analyses]}


# ---- Alerts ----


@router.get("/alerts", tags=["Alerts"])
async def list_alerts(
    records: Records, ctx: Context, unread_only: bool = Query(default=False, alias="unreadOnly")
) -> dict[str, Any]:
    alerts = await records.alerts.list_alerts(ctx.doctor_id, unread_only=unread_only)
    return {
        "alerts": [a.to_record() for a in alerts],
        "unreadCount": sum(1 for a in alerts if not a.read),
    }


@router.post("/alerts", tags=["Alerts"])
async def create_alert(body: AlertCreate, records: Records, ctx: Context) -> dict[str, Any]:
    alert = await records.alerts.create_alert(
        doctor_id=ctx.doctor_id,
        title=body.title,
        message=body.message,
        alert_type=body.type,
        patient_id=body.patient_id,
        patient_name=body.patient_name,
    )
    return {"success": True, "alert": alert.to_record()}


@router.put("/alerts/{alert_id}/read", tags=["Alerts"])
async def mark_alert_read(alert_id: str, records: Records, ctx: Context) -> dict[str, Any]:
    alert = await records.alerts.mark_read(ctx.doctor_id, alert_id)
    return {"success": True, "alert": alert.to_record()}


# ---- Application factory ----


async def handle_medical_record_error(request: Request, exc: MedicalRecordError) -> JSONResponse:
    status_code = status_code_for(exc)
    log = logger.bind(path=request.url.path, method=request.method, error_code=exc.code)
    if status_code >= 500:
        log.error("request_failed", error=exc.message)
    else:
        log.info("request_rejected", error=exc.message, status_code=status_code)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


def create_app(
    config: AppConfig | None = None,
    store: KeyValueStore | None = None,
    authenticator: Authenticator | None = None,
) -> FastAPI:
    """
    Build the application. Everything is injectable so tests can run against
    an in-memory store with known API keys.
    """
    config = config or get_config()
    configure_logging(config.logging)

    store = store or create_store(config.database.backend, config.database.url)
    authenticator = authenticator or StaticKeyAuthenticator(config.auth.api_keys)

    @asynccontextmanager
    async def lifespan(app: FastAPI):  # type: ignore[no-untyped-def]
        logger.info(
            "api_starting",
            environment=config.environment,
            storage_backend=config.database.backend,
            api_keys=len(config.auth.api_keys),
        )
        yield
        dispose = getattr(store, "dispose", None)
        if callable(dispose):
            dispose()
        logger.info("api_stopped")

    app = FastAPI(
        title="Glove Neuropathy Monitor API",
        description="Patient records, glove measurements and neuropathy risk screening",
        version=API_VERSION,
        debug=config.debug,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.records = MedicalRecords(store)
    app.state.authenticator = authenticator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.api.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", config.api.api_key_header],
    )
    app.add_exception_handler(
        MedicalRecordError, handle_medical_record_error  # type: ignore[arg-type]
    )

    @app.get("/health", tags=["Health"])
    async def health() -> dict[str, Any]:
        return {"status": "healthy", "version": API_VERSION, "environment": config.environment}

    app.include_router(router)
    return app
