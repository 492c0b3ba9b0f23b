from __future__ import annotations

import logging
import tempfile
from dataclasses import dataclass
from enum import Enum
from typing import IO, Iterable, Optional

from .decompress import decompress
from .errors import (
    DecodeError,
    HandoffAborted,
    SourceError,
    TransferError,
    VerifierFault,
    WriteError,
)
from .handoff import DEFAULT_HANDOFF_CAPACITY
from .tee import tee
from .verifier import DigestChecker, SignatureChecker, Verdict, VerifierTask
from .writer import Destination, ProgressReporter, SequentialWriter

logger = logging.getLogger(__name__)


STAGING_COPY_CHUNK = 1024 * 1024


class WritePolicy(Enum):
    EAGER = "eager"
    STAGED = "staged"


class Outcome(Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class FailureReason(Enum):
    VERIFICATION_FAILED = "verification_failed"
    SOURCE_ERROR = "source_error"
    DECODE_ERROR = "decode_error"
    WRITE_ERROR = "write_error"
    VERIFIER_FAULT = "verifier_fault"


class CoordinatorState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class TransferResult:
    bytes_written: int
    verdict: Optional[Verdict]
    outcome: Outcome
    reason: Optional[FailureReason] = None
    error: Optional[BaseException] = None
    bytes_read: int = 0

    @property
    def succeeded(self) -> bool:
        return self.outcome is Outcome.SUCCEEDED

    def describe(self) -> str:
        if self.succeeded:
            return f"succeeded ({self.bytes_written} bytes written)"
        detail = f": {self.error}" if self.error is not None else ""
        assert self.reason is not None
        return f"failed ({self.reason.value}){detail}"


def _reason_for(error: BaseException) -> FailureReason:
    if isinstance(error, HandoffAborted) and error.reason is not None:
        return _reason_for(error.reason)
    if isinstance(error, DecodeError):
        return FailureReason.DECODE_ERROR
    if isinstance(error, WriteError):
        return FailureReason.WRITE_ERROR
    if isinstance(error, SourceError):
        return FailureReason.SOURCE_ERROR
    return FailureReason.VERIFIER_FAULT


def _origin(error: BaseException) -> BaseException:
    while isinstance(error, HandoffAborted) and error.reason is not None:
        error = error.reason
    return error


class Coordinator:
    """One verified streaming transfer.

    The verifier runs on its own thread and drives the tee, which feeds the
    handoff buffer. The calling thread decompresses from the handoff and
    writes. Whichever path fails first aborts the handoff, and the verifier
    thread is always joined before ``run`` returns.

    With ``WritePolicy.STAGED`` the decompressed image goes to a temporary
    file in ``staging_dir`` and is copied to the destination only after a
    valid verdict.
    """

    def __init__(
        self,
        source: Iterable[bytes],
        signature: bytes,
        destination: Destination,
        *,
        handoff_capacity: int = DEFAULT_HANDOFF_CAPACITY,
        checker: Optional[SignatureChecker] = None,
        policy: WritePolicy = WritePolicy.EAGER,
        staging_dir: Optional[str] = None,
    ) -> None:
        self.source = source
        self.signature = signature
        self.destination = destination
        self.handoff_capacity = handoff_capacity
        self.checker = checker if checker is not None else DigestChecker()
        self.policy = policy
        self.staging_dir = staging_dir
        self.state = CoordinatorState.IDLE

    def run(self) -> TransferResult:
        if self.state is not CoordinatorState.IDLE:
            raise RuntimeError(f"transfer already ran (state={self.state.value})")
        self.state = CoordinatorState.RUNNING

        logger.info(
            "Starting transfer (policy=%s, checker=%s, handoff=%d bytes)",
            self.policy.value,
            self.checker.name,
            self.handoff_capacity,
        )

        staging: Optional[IO[bytes]] = None
        if self.policy is WritePolicy.STAGED:
            staging = tempfile.TemporaryFile(prefix="coreos-install-", dir=self.staging_dir)

        try:
            return self._run(staging)
        finally:
            if staging is not None:
                staging.close()

    def _run(self, staging: Optional[IO[bytes]]) -> TransferResult:
        verifier_copy, handoff = tee(self.source, self.handoff_capacity)
        task = VerifierTask(verifier_copy, self.signature, self.checker, handoff)

        sink = staging if staging is not None else self.destination
        label = "Staged" if staging is not None else "Written"
        writer = SequentialWriter(sink, progress=ProgressReporter(label))

        error: Optional[TransferError] = None
        finished = False
        task.start()
        try:
            writer.write_all(decompress(handoff))
            finished = True
        except TransferError as e:
            error = e
        finally:
            if not finished:
                handoff.abort(error if error is not None else TransferError("transfer interrupted"))
            verdict = task.join()

        # A checker that fails after the last chunk aborts too late for the
        # decompressing side to notice.
        if error is None and isinstance(verdict.cause, VerifierFault):
            error = verdict.cause

        bytes_written = writer.bytes_written if staging is None else 0

        if error is None and verdict.valid and staging is not None:
            staged = writer.bytes_written
            logger.info("Signature valid; copying %d staged bytes to the destination", staged)
            staging.seek(0)
            final = SequentialWriter(self.destination, progress=ProgressReporter("Written"))
            try:
                final.write_all(iter(lambda: staging.read(STAGING_COPY_CHUNK), b""))
            except WriteError as e:
                error = e
            bytes_written = final.bytes_written

        return self._finish(bytes_written, verdict, error, verifier_copy.bytes_read)

    def _finish(
        self,
        bytes_written: int,
        verdict: Verdict,
        error: Optional[TransferError],
        bytes_read: int,
    ) -> TransferResult:
        if error is not None:
            reason = _reason_for(error)
            origin = _origin(error)
            self.state = CoordinatorState.FAILED
            logger.error(
                "Transfer failed (%s) after %d bytes written: %s",
                reason.value,
                bytes_written,
                origin,
            )
            return TransferResult(
                bytes_written=bytes_written,
                verdict=verdict,
                outcome=Outcome.FAILED,
                reason=reason,
                error=origin,
                bytes_read=bytes_read,
            )

        if not verdict.valid:
            self.state = CoordinatorState.FAILED
            if bytes_written:
                logger.error(
                    "IMAGE NOT VERIFIED (%s): %d bytes were written to the destination "
                    "and must not be trusted",
                    verdict.describe(),
                    bytes_written,
                )
            else:
                logger.error("Image not verified (%s); destination left untouched", verdict.describe())
            return TransferResult(
                bytes_written=bytes_written,
                verdict=verdict,
                outcome=Outcome.FAILED,
                reason=FailureReason.VERIFICATION_FAILED,
                error=verdict.cause,
                bytes_read=bytes_read,
            )

        self.state = CoordinatorState.SUCCEEDED
        logger.info("Transfer succeeded: %d bytes read, %d bytes written", bytes_read, bytes_written)
        return TransferResult(
            bytes_written=bytes_written,
            verdict=verdict,
            outcome=Outcome.SUCCEEDED,
            bytes_read=bytes_read,
        )


def run_pipeline(
    source: Iterable[bytes],
    signature: bytes,
    destination: Destination,
    handoff_capacity: int = DEFAULT_HANDOFF_CAPACITY,
    *,
    checker: Optional[SignatureChecker] = None,
    policy: WritePolicy = WritePolicy.EAGER,
    staging_dir: Optional[str] = None,
) -> TransferResult:
    """Verify, decompress and write one image; block until both paths finish."""

    return Coordinator(
        source,
        signature,
        destination,
        handoff_capacity=handoff_capacity,
        checker=checker,
        policy=policy,
        staging_dir=staging_dir,
    ).run()
