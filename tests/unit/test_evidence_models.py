"""
Evidence model unit tests.

Custody events, digest validation, integrity reports, timestamp proofs and
evidence record serialisation.
"""

from datetime import datetime, timedelta, timezone

import pytest

from screen_evidence.models.evidence import (
    CustodyAction,
    CustodyEvent,
    DeviceMetadata,
    DigestPair,
    IntegrityReport,
    StepResult,
    TimestampProof,
    action_code,
    format_utc,
    parse_utc,
)

SHA256 = "a" * 64
SHA512 = "b" * 128
T0 = datetime(2026, 1, 15, 9, 30, 0, tzinfo=timezone.utc)


class TestTimeFormatting:
    """Second-precision UTC timestamps."""

    def test_format_utc_truncates_to_seconds(self):
        assert format_utc(T0 + timedelta(microseconds=999)) == "2026-01-15T09:30:00Z"

    def test_format_utc_converts_offsets(self):
        """Non-UTC offsets are normalised to UTC."""
        plus_nine = timezone(timedelta(hours=9))

        assert format_utc(datetime(2026, 1, 15, 18, 30, 0, tzinfo=plus_nine)) == "2026-01-15T09:30:00Z"

    def test_parse_utc_accepts_z_suffix(self):
        assert parse_utc("2026-01-15T09:30:00Z") == T0

    def test_parse_utc_treats_naive_as_utc(self):
        assert parse_utc("2026-01-15T09:30:00") == T0


class TestCustodyEvent:
    """Custody event normalisation and sidecar form."""

    def test_action_enum_normalised_to_code(self):
        event = CustodyEvent(timestamp=T0, action=CustodyAction.MANIFEST_CREATED, details="x")

        assert event.action == "MANIFEST_CREATED"
        assert action_code("CUSTOM") == "CUSTOM"

    def test_naive_timestamp_becomes_utc(self):
        event = CustodyEvent(timestamp=datetime(2026, 1, 15, 9, 30, 0), action="NOTE", details="x")

        assert event.timestamp == T0

    def test_export_defaults_user_to_unknown(self):
        """
        GIVEN an event without an actor
        WHEN exporting
        THEN user is "Unknown"
        """
        data = CustodyEvent(timestamp=T0, action="NOTE", details="x").to_export_dict()

        assert data == {
            "timestamp": "2026-01-15T09:30:00Z",
            "action": "NOTE",
            "details": "x",
            "user": "Unknown",
        }

    def test_from_export_dict_round_trip(self):
        event = CustodyEvent(timestamp=T0, action="NOTE", details="x", actor="examiner")

        assert CustodyEvent.from_export_dict(event.to_export_dict()) == event

    @pytest.mark.parametrize(
        "data",
        [
            {"action": "NOTE", "details": "x"},
            {"timestamp": "2026-01-15T09:30:00Z", "details": "x"},
            {"timestamp": "2026-01-15T09:30:00Z", "action": "NOTE", "details": 5},
            {"timestamp": "yesterday", "action": "NOTE", "details": "x"},
        ],
    )
    def test_from_export_dict_rejects_bad_entries(self, data):
        with pytest.raises(ValueError):
            CustodyEvent.from_export_dict(data)


class TestDigestPair:
    def test_valid_digests(self):
        assert DigestPair(sha256=SHA256, sha512=SHA512).to_dict() == {"sha256": SHA256, "sha512": SHA512}

    @pytest.mark.parametrize(
        "sha256,sha512",
        [("A" * 64, SHA512), ("a" * 63, SHA512), (SHA256, "z" * 128)],
    )
    def test_invalid_digests_rejected(self, sha256, sha512):
        """Digests must be lowercase hex of the right length."""
        with pytest.raises(ValueError):
            DigestPair(sha256=sha256, sha512=sha512)


class TestIntegrityReport:
    def test_summary_valid(self):
        report = IntegrityReport(is_valid=True, issues=(), event_count=8)

        assert report.summary == "Chain of custody verified (8 events)"

    def test_summary_lists_issues(self):
        report = IntegrityReport(
            is_valid=False,
            issues=("Missing RECORDING_COMPLETE event", "Events not in chronological order at index 2"),
            event_count=3,
        )

        assert report.summary.splitlines() == [
            "Chain of custody issues found:",
            "Missing RECORDING_COMPLETE event",
            "Events not in chronological order at index 2",
        ]
        assert report.to_dict()["issues"] == list(report.issues)


class TestTimestampProofModel:
    def test_negative_drift(self):
        """Device clock ahead of NTP gives a negative difference."""
        proof = TimestampProof(
            file_hash=SHA256,
            ntp_timestamp=T0,
            ntp_server="time.nist.gov",
            device_timestamp=T0 + timedelta(seconds=3),
        )

        assert proof.time_difference_seconds == -3.0
        assert proof.tsa_response_size is None


class TestDeviceMetadata:
    def test_named_fields_override_extra(self):
        device = DeviceMetadata(
            device_model="MacBookPro18,3",
            extra={"device_model": "spoofed", "capture_fps": 60},
        )

        data = device.to_dict()

        assert data["device_model"] == "MacBookPro18,3"
        assert data["capture_fps"] == 60

    def test_extra_is_read_only(self):
        """
        GIVEN device metadata built from a caller-owned dict
        WHEN the caller or a record holder tries to change the extras
        THEN the metadata is unaffected
        """
        source = {"capture_fps": 60}
        device = DeviceMetadata(extra=source)

        with pytest.raises(TypeError):
            device.extra["tampered"] = True
        source["tampered"] = True

        assert "tampered" not in device.to_dict()


class TestStepResult:
    def test_success_and_failure(self):
        error = RuntimeError("boom")

        ok = StepResult.success("hash_generation", value=1)
        failed = StepResult.failure("tsa_token", error, mandatory=False)

        assert ok.ok is True and ok.value == 1 and ok.error is None
        assert failed.ok is False and failed.error is error and failed.mandatory is False
