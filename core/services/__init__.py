"""
Core services for the application.

This package contains the main service implementations: risk classification,
glove acquisition, key-value persistence, medical records and alerts.
"""

from .alerts import AlertManager
from .glove_source import (
    GloveRecorder,
    GloveRecorderConfig,
    MeasurementSource,
    Result,
    SimulatedGloveSource,
)
from .kv_store import InMemoryKeyValueStore, KeyValueStore, SQLAlchemyKeyValueStore
from .medical_records import MedicalRecords
from .risk_classifier import aggregate, classify, classify_metrics

__all__ = [
    "AlertManager",
    "GloveRecorder",
    "GloveRecorderConfig",
    "InMemoryKeyValueStore",
    "KeyValueStore",
    "MeasurementSource",
    "MedicalRecords",
    "Result",
    "SQLAlchemyKeyValueStore",
    "SimulatedGloveSource",
    "aggregate",
    "classify",
    "classify_metrics",
]
