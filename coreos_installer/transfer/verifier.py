from __future__ import annotations

import hashlib
import hmac
import logging
import os
import subprocess
import tempfile
import threading
from dataclasses import dataclass
from enum import Enum
from typing import IO, Iterable, Optional, Protocol

from ..lib.command import fmt_argv
from .errors import (
    HandoffAborted,
    SignatureMalformed,
    SourceError,
    VerificationMismatch,
    VerifierFault,
)
from .handoff import HandoffBuffer

logger = logging.getLogger(__name__)


class VerdictKind(Enum):
    VALID = "valid"
    INVALID = "invalid"
    ERROR = "error"


@dataclass(frozen=True)
class Verdict:
    kind: VerdictKind
    cause: Optional[BaseException] = None
    detail: str = ""

    @property
    def valid(self) -> bool:
        return self.kind is VerdictKind.VALID

    def describe(self) -> str:
        if self.detail:
            return f"{self.kind.value}: {self.detail}"
        return self.kind.value


class SignatureChecker(Protocol):
    """Incremental signature check over the compressed image."""

    name: str

    def begin(self, signature: bytes) -> None:
        ...

    def update(self, chunk: bytes) -> None:
        ...

    def finish(self) -> bool:
        ...

    def close(self) -> None:
        ...


# ---------------------------------------------------------------------------
# Digest files (sha512sum output or release DIGESTS files)
# ---------------------------------------------------------------------------


def parse_digest(signature: bytes, *, algorithm: str = "sha512", filename: Optional[str] = None) -> bytes:
    """Extract the expected digest for ``algorithm`` from a digest listing.

    Accepted layouts:
    - a bare hex digest
    - ``<hex>  <name>`` lines (sha512sum)
    - sectioned files with ``# SHA512 HASH`` style headers

    When ``filename`` is given, lines naming another file are skipped.
    """

    try:
        text = signature.decode("ascii")
    except UnicodeDecodeError as e:
        raise SignatureMalformed("digest file is not ASCII text") from e

    want = algorithm.lower()
    size = hashlib.new(want).digest_size
    section: Optional[str] = None

    for raw in text.splitlines():
        line = raw.strip()
        if not line:
            continue
        if line.startswith("#"):
            header = line.lstrip("#").split()
            section = header[0].lower() if header else None
            continue
        if section is not None and section != want:
            continue

        parts = line.split()
        name = parts[1].lstrip("*") if len(parts) > 1 else None
        if filename and name and os.path.basename(name) != filename:
            continue

        hex_digest = parts[0]
        if len(hex_digest) != size * 2:
            raise SignatureMalformed(
                f"{want} digest must be {size * 2} hex characters, got {len(hex_digest)}"
            )
        try:
            return bytes.fromhex(hex_digest)
        except ValueError as e:
            raise SignatureMalformed(f"{want} digest is not valid hex") from e

    raise SignatureMalformed(f"no {want} digest found" + (f" for {filename}" if filename else ""))


class DigestChecker:
    name = "digest"

    def __init__(self, *, algorithm: str = "sha512", filename: Optional[str] = None) -> None:
        self.algorithm = algorithm.lower()
        self.filename = filename
        self._expected: Optional[bytes] = None
        self._hash = hashlib.new(self.algorithm)

    def begin(self, signature: bytes) -> None:
        self._expected = parse_digest(signature, algorithm=self.algorithm, filename=self.filename)

    def update(self, chunk: bytes) -> None:
        self._hash.update(chunk)

    def finish(self) -> bool:
        if self._expected is None:
            raise SignatureMalformed("digest checker was never given a digest")
        actual = self._hash.digest()
        if hmac.compare_digest(actual, self._expected):
            return True
        logger.error(
            "%s mismatch: expected %s, got %s",
            self.algorithm,
            self._expected.hex(),
            actual.hex(),
        )
        return False

    def close(self) -> None:
        return None


# ---------------------------------------------------------------------------
# OpenPGP detached signatures via gpg
# ---------------------------------------------------------------------------

_MALFORMED_STATUS = {"NODATA", "BADARMOR", "UNEXPECTED"}


def _status_keywords(output: str) -> set[str]:
    keywords = set()
    for line in output.splitlines():
        if line.startswith("[GNUPG:] "):
            fields = line[len("[GNUPG:] ") :].split()
            if fields:
                keywords.add(fields[0])
    return keywords


class GpgChecker:
    """Stream the image into ``gpg --verify`` with the signature in a temp file.

    gpg reads the data from stdin while the transfer is running, so nothing is
    buffered here beyond the pipe. Status lines (``--status-fd``) decide the
    result: VALIDSIG with exit code 0 is the only accepted outcome.
    """

    name = "gpg"

    def __init__(
        self,
        *,
        keyring: Optional[str] = None,
        gpg_binary: str = "gpg",
        homedir: Optional[str] = None,
    ) -> None:
        self.keyring = keyring
        self.gpg_binary = gpg_binary
        self.homedir = homedir
        self._proc: Optional[subprocess.Popen] = None
        self._sig_path: Optional[str] = None
        self._status: Optional[IO[bytes]] = None
        self._stdin_closed = False

    def argv(self, sig_path: str) -> list[str]:
        argv = [self.gpg_binary, "--batch", "--no-tty", "--status-fd", "1"]
        if self.homedir:
            argv += ["--homedir", self.homedir]
        if self.keyring:
            argv += ["--no-default-keyring", "--keyring", os.path.abspath(self.keyring)]
        argv += ["--verify", sig_path, "-"]
        return argv

    def begin(self, signature: bytes) -> None:
        if not signature.strip():
            raise SignatureMalformed("signature is empty")

        fd, self._sig_path = tempfile.mkstemp(prefix="coreos-install-", suffix=".sig")
        with os.fdopen(fd, "wb") as f:
            f.write(signature)

        argv = self.argv(self._sig_path)
        logger.info("CMD %s", fmt_argv(argv))
        # Status goes to a file so a chatty gpg can never block on a full pipe.
        self._status = tempfile.TemporaryFile()
        try:
            self._proc = subprocess.Popen(
                argv,
                stdin=subprocess.PIPE,
                stdout=self._status,
                stderr=subprocess.STDOUT,
            )
        except OSError as e:
            raise VerifierFault(f"unable to run {self.gpg_binary}: {e}") from e

    def update(self, chunk: bytes) -> None:
        if self._proc is None or self._stdin_closed:
            return
        try:
            self._proc.stdin.write(chunk)
        except BrokenPipeError:
            # gpg gave up early (usually an unreadable signature); the exit
            # status and status lines are examined in finish().
            logger.debug("gpg closed its input early")
            self._stdin_closed = True

    def finish(self) -> bool:
        if self._proc is None or self._status is None:
            raise VerifierFault("gpg was never started")

        if not self._stdin_closed:
            self._stdin_closed = True
            try:
                self._proc.stdin.close()
            except BrokenPipeError:
                logger.debug("gpg closed its input before the final flush")
        rc = self._proc.wait()

        self._status.seek(0)
        output = self._status.read().decode("utf-8", "replace")
        keywords = _status_keywords(output)
        logger.debug("gpg exit=%d status=%s", rc, sorted(keywords))

        if rc == 0 and "VALIDSIG" in keywords:
            return True
        if keywords & _MALFORMED_STATUS:
            raise SignatureMalformed(f"gpg could not read the signature: {output.strip()}")
        if "NO_PUBKEY" in keywords:
            logger.error("Signing key is not in the keyring; cannot trust the image")
        logger.error("gpg rejected the image (exit=%d): %s", rc, output.strip())
        return False

    def close(self) -> None:
        if self._proc is not None and self._proc.poll() is None:
            self._proc.kill()
            self._proc.wait()
        if self._proc is not None and self._proc.stdin and not self._proc.stdin.closed:
            try:
                self._proc.stdin.close()
            except BrokenPipeError:
                logger.debug("gpg input already broken at close")
        if self._status is not None:
            self._status.close()
            self._status = None
        if self._sig_path is not None:
            try:
                os.unlink(self._sig_path)
            except FileNotFoundError:
                logger.debug("Signature temp file already removed: %s", self._sig_path)
            self._sig_path = None


def make_checker(
    kind: str,
    *,
    keyring: Optional[str] = None,
    filename: Optional[str] = None,
    algorithm: str = "sha512",
) -> SignatureChecker:
    if kind == "gpg":
        return GpgChecker(keyring=keyring)
    if kind == "digest":
        return DigestChecker(algorithm=algorithm, filename=filename)
    raise ValueError(f"Unknown verification method: {kind!r} (expected gpg|digest)")


# ---------------------------------------------------------------------------
# Verification over a stream
# ---------------------------------------------------------------------------


def verify(data: Iterable[bytes], signature: bytes, checker: SignatureChecker) -> Verdict:
    """Check ``signature`` against ``data``, always consuming ``data`` to the end.

    An unreadable signature does not stop consumption: the stream is still
    drained so the buffered branch of the transfer sees a normal end of data.
    Source failures, aborts and checker faults end consumption immediately.
    """

    malformed: Optional[SignatureMalformed] = None
    try:
        try:
            checker.begin(signature)
        except SignatureMalformed as e:
            logger.error("Signature is malformed: %s", e)
            malformed = e
        except VerifierFault as e:
            return Verdict(VerdictKind.ERROR, cause=e, detail=str(e))

        try:
            for chunk in data:
                if malformed is None:
                    checker.update(chunk)
        except HandoffAborted as e:
            return Verdict(VerdictKind.ERROR, cause=e, detail="transfer aborted by the writing side")
        except SourceError as e:
            return Verdict(VerdictKind.ERROR, cause=e, detail="image source failed")
        except VerifierFault as e:
            return Verdict(VerdictKind.ERROR, cause=e, detail=str(e))

        if malformed is not None:
            return Verdict(VerdictKind.ERROR, cause=malformed, detail=str(malformed))

        try:
            ok = checker.finish()
        except SignatureMalformed as e:
            logger.error("Signature is malformed: %s", e)
            return Verdict(VerdictKind.ERROR, cause=e, detail=str(e))

        if ok:
            logger.info("Signature verified (%s)", checker.name)
            return Verdict(VerdictKind.VALID, detail=f"{checker.name} signature verified")

        mismatch = VerificationMismatch(f"{checker.name} signature does not match the image")
        return Verdict(VerdictKind.INVALID, cause=mismatch, detail=str(mismatch))
    finally:
        checker.close()


class VerifierTask:
    """Run ``verify`` on its own thread and settle the handoff exactly once.

    Once consumption ends the handoff is closed, unless the verdict came from a
    source failure, an abort or a checker fault, in which case it is aborted so
    the decompressing side stops instead of waiting for data that will not come.
    """

    def __init__(
        self,
        data: Iterable[bytes],
        signature: bytes,
        checker: SignatureChecker,
        handoff: HandoffBuffer,
    ) -> None:
        self._data = data
        self._signature = signature
        self._checker = checker
        self._handoff = handoff
        self._thread = threading.Thread(target=self._run, name="verifier", daemon=True)
        self.verdict: Optional[Verdict] = None

    def start(self) -> None:
        self._thread.start()

    def join(self) -> Verdict:
        self._thread.join()
        assert self.verdict is not None
        return self.verdict

    def _run(self) -> None:
        try:
            verdict = verify(self._data, self._signature, self._checker)
        except Exception as e:
            logger.exception("Signature checker crashed")
            fault = VerifierFault(f"{self._checker.name} checker failed: {e}")
            fault.__cause__ = e
            verdict = Verdict(VerdictKind.ERROR, cause=fault, detail=str(fault))

        self.verdict = verdict
        if verdict.kind is VerdictKind.ERROR and not isinstance(verdict.cause, SignatureMalformed):
            self._handoff.abort(verdict.cause)
        else:
            self._handoff.close()
