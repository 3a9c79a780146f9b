import base64
from datetime import datetime, timezone
from urllib.parse import parse_qs, urlsplit

import pytest

from app.services import totp

# RFC 6238 appendix B, SHA1 seed truncated to 6 digits
RFC_SECRET = base64.b32encode(b"12345678901234567890").decode("ascii")


class TestGenerateSecret:
    def test_base32_without_padding(self):
        secret = totp.generate_secret()
        assert "=" not in secret
        assert len(base64.b32decode(secret + "=" * (-len(secret) % 8))) == 20

    def test_secrets_are_unique(self):
        assert len({totp.generate_secret() for _ in range(50)}) == 50

    def test_rejects_short_secrets(self):
        with pytest.raises(ValueError):
            totp.generate_secret(10)


class TestCodes:
    @pytest.mark.parametrize(
        "timestamp,expected",
        [
            (59, "287082"),
            (1111111109, "081804"),
            (1234567890, "005924"),
            (2000000000, "279037"),
        ],
    )
    def test_rfc_vectors(self, timestamp, expected):
        assert totp.current_code(RFC_SECRET, at=timestamp) == expected

    def test_accepts_datetime(self):
        at = datetime.fromtimestamp(1111111109, tz=timezone.utc)
        assert totp.current_code(RFC_SECRET, at=at) == "081804"

    def test_naive_datetime_is_utc(self):
        at = datetime.fromtimestamp(1111111109, tz=timezone.utc).replace(tzinfo=None)
        assert totp.current_code(RFC_SECRET, at=at) == "081804"


class TestVerify:
    def test_current_step(self):
        secret = totp.generate_secret()
        code = totp.current_code(secret, at=1_700_000_000)
        assert totp.verify(secret, code, at=1_700_000_000) is True

    def test_accepts_drift_within_window(self):
        secret = totp.generate_secret()
        now = 1_700_000_000
        for steps in (-2, -1, 1, 2):
            code = totp.current_code(secret, at=now + steps * 30)
            assert totp.verify(secret, code, at=now, window_steps=2) is True

    def test_rejects_drift_outside_window(self):
        secret = totp.generate_secret()
        now = 1_700_000_000
        code = totp.current_code(secret, at=now + 3 * 30)
        if code != totp.current_code(secret, at=now):
            assert totp.verify(secret, code, at=now, window_steps=2) is False

    def test_zero_window_only_accepts_current_step(self):
        secret = RFC_SECRET
        previous = totp.current_code(secret, at=1111111109 - 30)
        assert totp.verify(secret, previous, at=1111111109, window_steps=0) is False

    @pytest.mark.parametrize("code", ["", "12345", "1234567", "abcdef", "12 345", None])
    def test_rejects_malformed_codes(self, code):
        assert totp.verify(RFC_SECRET, code, at=59) is False

    def test_strips_whitespace(self):
        assert totp.verify(RFC_SECRET, " 287082 ", at=59) is True

    @pytest.mark.parametrize("at", [0, 1, 30, 59, 60, 89])
    def test_window_near_epoch(self, at):
        secret = totp.generate_secret()
        assert totp.verify(secret, totp.current_code(secret, at=at), at=at) is True

    def test_match_step_reports_matching_step(self):
        at = 1111111109
        step = totp.time_step(at)
        ahead = totp.current_code(RFC_SECRET, at=at + 30)
        assert totp.match_step(RFC_SECRET, "081804", at=at) == step
        assert totp.match_step(RFC_SECRET, ahead, at=at) == step + 1

    def test_match_step_none_on_mismatch(self):
        assert totp.match_step(RFC_SECRET, "abcdef", at=59) is None

    def test_bad_secret_is_rejected(self):
        assert totp.verify("not-base32!", "123456") is False

    def test_empty_secret_is_rejected(self):
        assert totp.verify("", "123456") is False


class TestProvisioning:
    def test_uri_carries_parameters(self):
        uri = totp.provisioning_uri("JBSWY3DPEHPK3PXP", "alice@esprim.tn", "Bib-Esprim")
        parts = urlsplit(uri)
        assert parts.scheme == "otpauth"
        assert parts.netloc == "totp"
        assert parts.path == "/Bib-Esprim:alice@esprim.tn"
        query = parse_qs(parts.query)
        assert query["secret"] == ["JBSWY3DPEHPK3PXP"]
        assert query["issuer"] == ["Bib-Esprim"]
        assert query["digits"] == ["6"]
        assert query["period"] == ["30"]

    def test_label_is_escaped(self):
        uri = totp.provisioning_uri("JBSWY3DPEHPK3PXP", "a b@x.tn", "My Library")
        assert "My%20Library:a%20b@x.tn" in uri

    def test_qr_data_url_is_png(self):
        data_url = totp.qr_data_url("otpauth://totp/x?secret=JBSWY3DPEHPK3PXP")
        assert data_url.startswith("data:image/png;base64,")
        raw = base64.b64decode(data_url.split(",", 1)[1])
        assert raw[:8] == b"\x89PNG\r\n\x1a\n"
