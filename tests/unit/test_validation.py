"""
Unit tests for input validation and webhook authentication helpers.
"""

import pytest

from ldt_pipeline.api.security import SignatureError, compute_signature, is_ip_allowed, verify_signature
from ldt_pipeline.core.identifiers import is_valid_bsnr, is_valid_lanr
from ldt_pipeline.utils.validation import (
    ValidationError,
    validate_directory_path,
    validate_entry_id,
    validate_identifier_hint,
    validate_limit,
    validate_message_id,
    validate_offset,
)

pytestmark = pytest.mark.unit

NOW = 1746014400.0  # 2025-04-30T12:00:00Z
BODY = b"01380008230\r\n0180201793860200\r\n"


class TestValidationUtilities:
    """Tests for the input validation utilities"""

    def test_validate_message_id_valid(self):
        """Test valid message ids"""
        assert validate_message_id("mirth-2025-04-30-0001") == "mirth-2025-04-30-0001"
        assert validate_message_id("urn:msg:42") == "urn:msg:42"
        assert validate_message_id("  msg.1  ") == "msg.1"

    def test_validate_message_id_invalid(self):
        """Test invalid message ids"""
        with pytest.raises(ValidationError, match="must be a non-empty string"):
            validate_message_id("")

        with pytest.raises(ValidationError, match="cannot be empty"):
            validate_message_id("   ")

        with pytest.raises(ValidationError, match="invalid characters"):
            validate_message_id("msg'; DROP TABLE raw_message--")

        with pytest.raises(ValidationError, match="maximum length"):
            validate_message_id("m" * 256)

    def test_validate_entry_id_uses_field_name(self):
        """Test the field name appears in the error"""
        with pytest.raises(ValidationError, match="entry_id"):
            validate_entry_id("q 1")

    def test_validate_identifier_hint(self):
        """Test hints are optional but must be well-formed when present"""
        assert validate_identifier_hint("bsnr", None) is None
        assert validate_identifier_hint("bsnr", "  ") is None
        assert validate_identifier_hint("bsnr", " 93860200 ") == "93860200"
        assert validate_identifier_hint("lanr", "1234567") == "1234567"

        with pytest.raises(ValidationError, match="8 digits"):
            validate_identifier_hint("bsnr", "1234567")
        with pytest.raises(ValidationError, match="7 or 8 digits"):
            validate_identifier_hint("lanr", "12345A7")

    def test_identifier_formats(self):
        """Test BSNR is exactly 8 digits and LANR 7 or 8"""
        assert is_valid_bsnr("93860200")
        assert not is_valid_bsnr("9386020")
        assert not is_valid_bsnr("938602001")
        assert is_valid_lanr("7272005")
        assert is_valid_lanr("72720053")
        assert not is_valid_lanr("727200")

    def test_validate_limit(self):
        """Test limit validation"""
        assert validate_limit(100) == 100

        with pytest.raises(ValidationError, match="positive integer"):
            validate_limit(0)

        with pytest.raises(ValidationError, match="exceeds maximum"):
            validate_limit(10001)

        with pytest.raises(ValidationError, match="must be an integer"):
            validate_limit(True)

    def test_validate_offset(self):
        """Test offset validation"""
        assert validate_offset(0) == 0

        with pytest.raises(ValidationError, match="non-negative"):
            validate_offset(-1)

    def test_validate_directory_path(self):
        """Test import directory validation"""
        assert validate_directory_path(" /data/archive/2025 ") == "/data/archive/2025"

        with pytest.raises(ValidationError, match="path traversal"):
            validate_directory_path("/data/../etc")

        with pytest.raises(ValidationError, match="null bytes"):
            validate_directory_path("/data/\x00archive")


class TestSignature:
    """Tests for webhook HMAC signatures"""

    def test_signature_format(self):
        """Test signatures are sha256= followed by a hex digest"""
        signature = compute_signature("s3cret", "1746014400000", BODY)

        assert signature.startswith("sha256=")
        assert len(signature) == len("sha256=") + 64

    @pytest.mark.parametrize("timestamp", ["1746014400000", "1746014400"])
    def test_milliseconds_or_seconds(self, timestamp):
        """Test both millisecond and second timestamps verify"""
        signature = compute_signature("s3cret", timestamp, BODY)
        verify_signature("s3cret", timestamp, BODY, signature, now=NOW)

    def test_tampered_body(self):
        """Test a modified body fails verification"""
        signature = compute_signature("s3cret", "1746014400", BODY)

        with pytest.raises(SignatureError, match="mismatch"):
            verify_signature("s3cret", "1746014400", BODY + b"x", signature, now=NOW)

    def test_stale_timestamp(self):
        """Test a timestamp outside the tolerance is rejected"""
        timestamp = str(int(NOW) - 301)
        signature = compute_signature("s3cret", timestamp, BODY)

        with pytest.raises(SignatureError, match="window"):
            verify_signature("s3cret", timestamp, BODY, signature, tolerance_seconds=300, now=NOW)

    @pytest.mark.parametrize(
        "timestamp,signature",
        [(None, "sha256=00"), ("1746014400", None), ("yesterday", "sha256=00")],
    )
    def test_missing_or_malformed_headers(self, timestamp, signature):
        """Test missing headers and non-numeric timestamps are rejected"""
        with pytest.raises(SignatureError):
            verify_signature("s3cret", timestamp, BODY, signature, now=NOW)

    @pytest.mark.parametrize("timestamp", ["nan", "NaN", "inf", "-Infinity"])
    def test_non_finite_timestamp(self, timestamp):
        """Test a correctly signed NaN or infinite timestamp is still rejected"""
        signature = compute_signature("s3cret", timestamp, BODY)

        with pytest.raises(SignatureError, match="Malformed"):
            verify_signature("s3cret", timestamp, BODY, signature, now=NOW)


class TestIpAllowlist:
    """Tests for is_ip_allowed"""

    def test_empty_allowlist_allows_all(self):
        assert is_ip_allowed("203.0.113.9", [])
        assert is_ip_allowed(None, [])

    @pytest.mark.parametrize(
        "client_ip,allowed",
        [
            ("10.0.0.7", True),
            ("10.0.1.7", False),
            ("192.168.1.5", True),
            ("::ffff:10.0.0.7", True),
            ("2001:db8::1", True),
            ("testclient", False),
            (None, False),
        ],
    )
    def test_addresses_and_ranges(self, client_ip, allowed):
        """Test single addresses, CIDR ranges and IPv4-mapped IPv6"""
        allowlist = ["10.0.0.0/24", "192.168.1.5", "2001:db8::/32"]
        assert is_ip_allowed(client_ip, allowlist) is allowed

    def test_malformed_entries_are_ignored(self):
        """Test a bad allowlist entry does not break the others"""
        assert is_ip_allowed("10.0.0.7", ["not-an-ip", "10.0.0.7"])
        assert not is_ip_allowed("10.0.0.8", ["not-an-ip", "10.0.0.7"])
