"""
Business logic services.
"""
from clipgen.services.credit_service import CreditLedger
from clipgen.services.job_orchestrator import JobOrchestrator, SubmitRequest, SubmitResult
from clipgen.services.progress import ProgressBroadcaster, ProgressSink

__all__ = [
    "CreditLedger",
    "JobOrchestrator",
    "SubmitRequest",
    "SubmitResult",
    "ProgressBroadcaster",
    "ProgressSink",
]
