"""Domain services for Harvester."""

from harvester_core.domain.services.gate import GateTally, LeadStore, ValidationGate
from harvester_core.domain.services.normalizer import FieldMapping, Normalizer
from harvester_core.domain.services.runs import RunNotFoundError, RunService

__all__ = [
    "FieldMapping",
    "GateTally",
    "LeadStore",
    "Normalizer",
    "RunNotFoundError",
    "RunService",
    "ValidationGate",
]
