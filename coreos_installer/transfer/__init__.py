from .errors import (
    DecodeError,
    HandoffAborted,
    SignatureMalformed,
    SourceError,
    TransferError,
    VerificationMismatch,
    VerifierFault,
    WriteError,
)
from .handoff import DEFAULT_HANDOFF_CAPACITY, HandoffBuffer
from .pipeline import (
    Coordinator,
    CoordinatorState,
    FailureReason,
    Outcome,
    TransferResult,
    WritePolicy,
    run_pipeline,
)
from .verifier import DigestChecker, GpgChecker, Verdict, VerdictKind, make_checker, verify

__all__ = [
    "DEFAULT_HANDOFF_CAPACITY",
    "Coordinator",
    "CoordinatorState",
    "DecodeError",
    "DigestChecker",
    "FailureReason",
    "GpgChecker",
    "HandoffAborted",
    "HandoffBuffer",
    "Outcome",
    "SignatureMalformed",
    "SourceError",
    "TransferError",
    "TransferResult",
    "Verdict",
    "VerdictKind",
    "VerificationMismatch",
    "VerifierFault",
    "WriteError",
    "WritePolicy",
    "make_checker",
    "run_pipeline",
    "verify",
]
