"""Failure classification priority tests."""

import signal

from broadcast_engine.classifier import classify
from broadcast_engine.errors import ErrorKind
from broadcast_engine.monitor import NetworkQualityMonitor
from broadcast_engine.supervisor import ProcessOutcome

FACEBOOK = "rtmps://live-api-s.facebook.com:443/rtmp/"
YOUTUBE = "rtmp://a.rtmp.youtube.com/live2"


class TestPriority:
    def test_user_stop(self):
        outcome = ProcessOutcome(returncode=-signal.SIGTERM, stop_requested=True, sent_signal=signal.SIGTERM)

        result = classify(outcome)

        assert result.kind is ErrorKind.USER_STOP
        assert not result.retryable

    def test_sigkill_without_watchdog_is_user_stop(self):
        assert classify(ProcessOutcome(returncode=-signal.SIGKILL)).kind is ErrorKind.USER_STOP

    def test_fault_signal_is_never_a_user_stop(self):
        outcome = ProcessOutcome(returncode=-signal.SIGSEGV, stop_requested=True)

        result = classify(outcome)

        assert result.kind is ErrorKind.CRASH
        assert "SIGSEGV" in result.message
        assert not result.retryable

    def test_shell_exit_code_139_is_a_crash(self):
        assert classify(ProcessOutcome(returncode=139)).kind is ErrorKind.CRASH

    def test_fatal_config_beats_connection(self):
        outcome = ProcessOutcome(
            returncode=1,
            stderr_tail=["rtmp://ingest/live: Connection refused", "Unknown encoder 'libx265'"],
        )

        result = classify(outcome)

        assert result.kind is ErrorKind.FATAL_CONFIG
        assert "Unknown encoder" in result.message

    def test_memory_pressure(self):
        outcome = ProcessOutcome(returncode=1, stderr_tail=["av_malloc: Cannot allocate memory"])

        result = classify(outcome)

        assert result.kind is ErrorKind.MEMORY_PRESSURE
        assert "reducing bitrate/resolution" in result.message

    def test_connection_error_is_retryable(self):
        outcome = ProcessOutcome(returncode=1, stderr_tail=["av_interleaved_write_frame(): Broken pipe"])

        result = classify(outcome)

        assert result.kind is ErrorKind.CONNECTION_ERROR
        assert result.retryable

    def test_watchdog_stall_is_a_connection_error(self):
        outcome = ProcessOutcome(returncode=-signal.SIGTERM, stalled=True, sent_signal=signal.SIGTERM)

        result = classify(outcome)

        assert result.kind is ErrorKind.CONNECTION_ERROR
        assert result.retryable

    def test_unclassified(self):
        outcome = ProcessOutcome(returncode=187, stderr_tail=["something odd happened"])

        result = classify(outcome)

        assert result.kind is ErrorKind.UNCLASSIFIED
        assert not result.retryable
        assert result.message == "ffmpeg exited with code 187: something odd happened"


class TestDestinationPatterns:
    def test_facebook_already_publishing(self):
        outcome = ProcessOutcome(returncode=1, stderr_tail=["Server error: Already publishing"])

        assert classify(outcome, FACEBOOK).kind is ErrorKind.CONNECTION_ERROR
        assert classify(outcome, YOUTUBE).kind is ErrorKind.UNCLASSIFIED


class TestNetworkContext:
    def test_unstable_network_augments_message(self):
        network = NetworkQualityMonitor("b1")
        for sample in (500.0, 4500.0, 600.0, 4400.0):
            network.record_bitrate(sample)
        outcome = ProcessOutcome(returncode=1, stderr_tail=["Connection timed out"])

        result = classify(outcome, YOUTUBE, network)

        assert result.kind is ErrorKind.CONNECTION_ERROR
        assert "Network was unstable" in result.message

    def test_stable_network_leaves_message(self):
        network = NetworkQualityMonitor("b1")
        for sample in (2500.0, 2510.0, 2490.0):
            network.record_bitrate(sample)
        outcome = ProcessOutcome(returncode=1, stderr_tail=["Connection timed out"])

        assert "Network" not in classify(outcome, YOUTUBE, network).message
