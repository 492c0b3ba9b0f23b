from __future__ import annotations

from typing import Optional


class TransferError(RuntimeError):
    """Base class for every failure raised inside the transfer pipeline."""


class SourceError(TransferError):
    """Reading the compressed image from its source failed."""


class SignatureMalformed(TransferError):
    """The detached signature cannot be parsed or used."""


class VerificationMismatch(TransferError):
    """The signature does not match the compressed image."""


class DecodeError(TransferError):
    """The compressed stream is corrupt or truncated."""


class VerifierFault(TransferError):
    """The signature checker itself could not run."""


class WriteError(TransferError):
    def __init__(self, message: str, *, bytes_written: int = 0) -> None:
        super().__init__(message)
        self.bytes_written = bytes_written


class HandoffAborted(TransferError):
    """Raised on both sides of a handoff buffer once it has been aborted.

    ``reason`` carries the error that caused the abort, so whichever path
    observes the abort can report the original fault.
    """

    def __init__(self, reason: Optional[BaseException] = None) -> None:
        msg = f"handoff aborted: {reason}" if reason is not None else "handoff aborted"
        super().__init__(msg)
        self.reason = reason
