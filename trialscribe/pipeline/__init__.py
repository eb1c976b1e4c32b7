from __future__ import annotations

from .client import HttpTranscriptServices, RetryPolicy, ServiceResult, TranscriptServices
from .mutations import MutationRegistry, default_registry
from .orchestrator import PipelineOrchestrator
from .synchronizer import StateSynchronizer, reconcile

__all__ = [
    "HttpTranscriptServices",
    "RetryPolicy",
    "ServiceResult",
    "TranscriptServices",
    "MutationRegistry",
    "default_registry",
    "PipelineOrchestrator",
    "StateSynchronizer",
    "reconcile",
]
