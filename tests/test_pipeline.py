from __future__ import annotations

import io

import pytest

from coreos_installer.transfer import (
    Coordinator,
    CoordinatorState,
    DecodeError,
    DigestChecker,
    FailureReason,
    HandoffAborted,
    Outcome,
    SignatureMalformed,
    SourceError,
    VerdictKind,
    VerifierFault,
    WriteError,
    WritePolicy,
    run_pipeline,
)

from helpers import (
    IMAGE_NAME,
    FailingDestination,
    RecordingChecker,
    chunked,
    digests_file,
    failing_source,
    flip_hex_digit,
    make_image,
    run_bounded,
)

CAPACITY = 64 * 1024


@pytest.fixture(scope="module")
def image():
    # Random payload so the compressed stream is ~10 MiB and spans many bzip2 blocks.
    return make_image(10 * 1024 * 1024, seed=2026)


@pytest.fixture(scope="module")
def small_image():
    return make_image(256 * 1024, seed=11)


def _checker():
    return DigestChecker(filename=IMAGE_NAME)


def test_valid_signature_succeeds_and_writes_exact_image(image):
    raw, compressed = image
    dest = io.BytesIO()

    result = run_bounded(
        lambda: run_pipeline(chunked(compressed), digests_file(compressed), dest, CAPACITY, checker=_checker())
    )

    assert result.outcome is Outcome.SUCCEEDED
    assert result.succeeded
    assert result.reason is None
    assert result.verdict.kind is VerdictKind.VALID
    assert result.bytes_written == len(raw)
    assert result.bytes_read == len(compressed)
    assert dest.getvalue() == raw


def test_flipped_signature_fails_verification_after_full_write(image):
    raw, compressed = image
    dest = io.BytesIO()
    sig = flip_hex_digit(digests_file(compressed))

    result = run_bounded(lambda: run_pipeline(chunked(compressed), sig, dest, CAPACITY, checker=_checker()))

    assert result.outcome is Outcome.FAILED
    assert result.reason is FailureReason.VERIFICATION_FAILED
    assert result.verdict.kind is VerdictKind.INVALID
    assert result.bytes_written == len(raw)
    assert dest.getvalue() == raw


def test_truncated_stream_is_a_decode_error_without_hanging(image):
    _, compressed = image
    truncated = compressed[: len(compressed) // 2]

    result = run_bounded(
        lambda: run_pipeline(chunked(truncated), digests_file(compressed), io.BytesIO(), CAPACITY, checker=_checker()),
        timeout=30,
    )

    assert result.outcome is Outcome.FAILED
    assert result.reason is FailureReason.DECODE_ERROR
    assert isinstance(result.error, DecodeError)
    assert result.verdict is not None


def test_corruption_mid_stream_aborts_the_verifier(image):
    _, compressed = image
    corrupt = bytearray(compressed)
    mid = len(corrupt) // 2
    for i in range(mid, mid + 64):
        corrupt[i] ^= 0xFF
    corrupt = bytes(corrupt)

    result = run_bounded(
        lambda: run_pipeline(chunked(corrupt), digests_file(compressed), io.BytesIO(), CAPACITY, checker=_checker()),
        timeout=30,
    )

    assert result.reason is FailureReason.DECODE_ERROR
    assert result.verdict.kind is VerdictKind.ERROR
    assert isinstance(result.verdict.cause, HandoffAborted)
    assert isinstance(result.verdict.cause.reason, DecodeError)
    # The verifier was stopped well before the end of the source.
    assert result.bytes_read < len(corrupt)


def test_verifier_sees_exactly_the_bytes_fed_to_the_decompressor(small_image):
    raw, compressed = small_image
    checker = RecordingChecker()
    dest = io.BytesIO()

    result = run_pipeline(chunked(compressed, 1000), b"sig", dest, 4096, checker=checker)

    assert result.succeeded
    assert b"".join(checker.chunks) == compressed
    assert dest.getvalue() == raw


def test_source_failure_is_reported_as_source_error(small_image):
    _, compressed = small_image

    result = run_bounded(
        lambda: run_pipeline(
            failing_source(compressed, fail_after=64 * 1024, size=8192),
            digests_file(compressed),
            io.BytesIO(),
            CAPACITY,
            checker=_checker(),
        )
    )

    assert result.reason is FailureReason.SOURCE_ERROR
    assert isinstance(result.error, SourceError)
    assert result.verdict.kind is VerdictKind.ERROR


def test_write_failure_stops_both_paths(image):
    _, compressed = image
    dest = FailingDestination(fail_after=3 * 1024 * 1024)

    result = run_bounded(
        lambda: run_pipeline(chunked(compressed), digests_file(compressed), dest, CAPACITY, checker=_checker()),
        timeout=30,
    )

    assert result.reason is FailureReason.WRITE_ERROR
    assert isinstance(result.error, WriteError)
    assert result.bytes_written <= 3 * 1024 * 1024
    assert result.bytes_written == len(dest.getvalue())
    assert isinstance(result.verdict.cause, HandoffAborted)


def test_checker_fault_is_not_reported_as_verification_failure(small_image):
    _, compressed = small_image
    checker = RecordingChecker(fail_on_update=VerifierFault("gpg died"))

    result = run_bounded(lambda: run_pipeline(chunked(compressed), b"sig", io.BytesIO(), CAPACITY, checker=checker))

    assert result.reason is FailureReason.VERIFIER_FAULT
    assert isinstance(result.error, VerifierFault)


def test_checker_fault_after_last_chunk_is_still_a_fault(small_image):
    _, compressed = small_image

    class FailsAtFinish(RecordingChecker):
        def finish(self):
            raise VerifierFault("gpg exited before reporting")

    dest = io.BytesIO()
    result = run_bounded(lambda: run_pipeline(chunked(compressed), b"sig", dest, CAPACITY, checker=FailsAtFinish()))

    assert result.reason is FailureReason.VERIFIER_FAULT
    assert isinstance(result.error, VerifierFault)
    assert not result.succeeded


def test_malformed_signature_fails_verification_but_writes_image(small_image):
    raw, compressed = small_image
    dest = io.BytesIO()

    result = run_pipeline(chunked(compressed), b"not a digest", dest, CAPACITY, checker=_checker())

    assert result.reason is FailureReason.VERIFICATION_FAILED
    assert result.verdict.kind is VerdictKind.ERROR
    assert isinstance(result.error, SignatureMalformed)
    assert result.bytes_written == len(raw)


def test_staged_policy_writes_only_after_a_valid_signature(small_image, tmp_path):
    raw, compressed = small_image
    dest = io.BytesIO()

    result = run_pipeline(
        chunked(compressed),
        digests_file(compressed),
        dest,
        CAPACITY,
        checker=_checker(),
        policy=WritePolicy.STAGED,
        staging_dir=str(tmp_path),
    )

    assert result.succeeded
    assert result.bytes_written == len(raw)
    assert dest.getvalue() == raw


def test_staged_policy_leaves_destination_untouched_on_bad_signature(small_image, tmp_path):
    _, compressed = small_image
    dest = io.BytesIO()

    result = run_pipeline(
        chunked(compressed),
        flip_hex_digit(digests_file(compressed)),
        dest,
        CAPACITY,
        checker=_checker(),
        policy=WritePolicy.STAGED,
        staging_dir=str(tmp_path),
    )

    assert result.reason is FailureReason.VERIFICATION_FAILED
    assert result.bytes_written == 0
    assert dest.getvalue() == b""
    assert list(tmp_path.iterdir()) == []


def test_same_inputs_give_the_same_verdict_twice(small_image):
    _, compressed = small_image
    sig = flip_hex_digit(digests_file(compressed))

    verdicts = [
        run_pipeline(chunked(compressed), sig, io.BytesIO(), CAPACITY, checker=_checker()).verdict.kind
        for _ in range(2)
    ]
    assert verdicts == [VerdictKind.INVALID, VerdictKind.INVALID]


def test_coordinator_is_single_shot(small_image):
    _, compressed = small_image
    coordinator = Coordinator(
        chunked(compressed), digests_file(compressed), io.BytesIO(), checker=_checker()
    )
    assert coordinator.state is CoordinatorState.IDLE

    result = coordinator.run()
    assert result.succeeded
    assert coordinator.state is CoordinatorState.SUCCEEDED

    with pytest.raises(RuntimeError):
        coordinator.run()


def test_failed_run_reaches_failed_state(small_image):
    _, compressed = small_image
    coordinator = Coordinator(chunked(compressed), b"bad", io.BytesIO(), checker=_checker())
    coordinator.run()
    assert coordinator.state is CoordinatorState.FAILED


def test_closed_destination_is_a_write_error(small_image):
    _, compressed = small_image
    dest = io.BytesIO()
    dest.close()
    coordinator = Coordinator(chunked(compressed), digests_file(compressed), dest, checker=_checker())

    result = run_bounded(coordinator.run)

    assert result.reason is FailureReason.WRITE_ERROR
    assert isinstance(result.error, WriteError)
    assert isinstance(result.error.__cause__, ValueError)
    assert result.bytes_written == 0
    assert coordinator.state is CoordinatorState.FAILED


def _run_staged(source, signature, dest, staging_dir):
    return run_bounded(
        lambda: run_pipeline(
            source,
            signature,
            dest,
            CAPACITY,
            checker=_checker(),
            policy=WritePolicy.STAGED,
            staging_dir=str(staging_dir),
        )
    )


def test_staged_policy_leaves_destination_untouched_on_truncated_stream(small_image, tmp_path):
    _, compressed = small_image
    dest = io.BytesIO()

    result = _run_staged(chunked(compressed[: len(compressed) // 2]), digests_file(compressed), dest, tmp_path)

    assert result.reason is FailureReason.DECODE_ERROR
    assert result.bytes_written == 0
    assert dest.getvalue() == b""
    assert list(tmp_path.iterdir()) == []


def test_staged_policy_leaves_destination_untouched_on_corrupt_stream(small_image, tmp_path):
    _, compressed = small_image
    corrupt = bytearray(compressed)
    mid = len(corrupt) // 2
    for i in range(mid, mid + 64):
        corrupt[i] ^= 0xFF
    dest = io.BytesIO()

    result = _run_staged(chunked(bytes(corrupt)), digests_file(compressed), dest, tmp_path)

    assert result.reason is FailureReason.DECODE_ERROR
    assert result.bytes_written == 0
    assert dest.getvalue() == b""
    assert list(tmp_path.iterdir()) == []


def test_staged_policy_leaves_destination_untouched_on_source_failure(small_image, tmp_path):
    _, compressed = small_image
    dest = io.BytesIO()

    result = _run_staged(
        failing_source(compressed, fail_after=64 * 1024, size=8192), digests_file(compressed), dest, tmp_path
    )

    assert result.reason is FailureReason.SOURCE_ERROR
    assert result.bytes_written == 0
    assert dest.getvalue() == b""
    assert list(tmp_path.iterdir()) == []
