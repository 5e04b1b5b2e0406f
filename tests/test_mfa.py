"""
Tests for TOTP provisioning and verification.
"""
from urllib.parse import parse_qs, urlparse

import pyotp
import pytest

from passotp.auth.mfa import (
    TotpVerifier,
    generate_qr_code_base64,
    generate_totp_secret,
    get_current_totp,
    verify_totp,
)

# A 30-second step boundary
START_TIME = 1_700_000_010.0


@pytest.fixture
def secret():
    return generate_totp_secret()


class TestTotpVerification:

    @pytest.mark.parametrize("offset", [-30, 0, 30])
    def test_adjacent_steps_accepted(self, secret, offset):
        code = get_current_totp(secret, START_TIME + offset)
        assert verify_totp(secret, code, for_time=START_TIME)

    @pytest.mark.parametrize("offset", [-90, 90])
    def test_distant_steps_rejected(self, secret, offset):
        code = get_current_totp(secret, START_TIME + offset)
        # A collision with the accepted window would make the test meaningless
        accepted = {get_current_totp(secret, START_TIME + d) for d in (-30, 0, 30)}
        if code in accepted:
            pytest.skip("code collision")

        assert not verify_totp(secret, code, for_time=START_TIME)

    @pytest.mark.parametrize("code", ["", "12345", "1234567", "abcdef"])
    def test_malformed_codes_rejected(self, secret, code):
        assert not verify_totp(secret, code, for_time=START_TIME)

    def test_spaces_are_ignored(self, secret):
        code = get_current_totp(secret, START_TIME)
        assert verify_totp(secret, f"{code[:3]} {code[3:]}", for_time=START_TIME)

    @pytest.mark.parametrize("template", ["ZZZ{code}", "{code}0", "{head}-abc-{tail}", "x{code}", "{head}\u00b7{tail}"])
    def test_padded_code_rejected(self, secret, template):
        code = get_current_totp(secret, START_TIME)
        token = template.format(code=code, head=code[:3], tail=code[3:])

        assert not verify_totp(secret, token, for_time=START_TIME)

    def test_missing_secret_rejected(self):
        assert not verify_totp("", "123456")


class TestTotpVerifier:

    def test_provisioning_uri(self, secret):
        totp = TotpVerifier(issuer="PassOTP")
        uri = totp.provisioning_uri("alice", secret)

        parsed = urlparse(uri)
        params = parse_qs(parsed.query)
        assert parsed.scheme == "otpauth"
        assert parsed.netloc == "totp"
        assert "alice" in parsed.path
        assert params["issuer"] == ["PassOTP"]
        assert params["secret"] == [secret]

    def test_provision_returns_qr_data_uri(self):
        secret, uri, qr_code = TotpVerifier().provision("alice")

        assert len(secret) == 32
        assert pyotp.TOTP(secret).provisioning_uri(name="alice", issuer_name="PassOTP") == uri
        assert qr_code.startswith("data:image/png;base64,")

    def test_verify_uses_window(self, secret):
        totp = TotpVerifier(window=0)
        code = get_current_totp(secret, START_TIME - 30)
        if code == get_current_totp(secret, START_TIME):
            pytest.skip("code collision")

        assert not totp.verify(code, secret, for_time=START_TIME)
        assert totp.verify(get_current_totp(secret, START_TIME), secret, for_time=START_TIME)


def test_qr_code_is_png():
    import base64

    data_uri = generate_qr_code_base64("otpauth://totp/PassOTP:alice?secret=JBSWY3DPEHPK3PXP")
    png = base64.b64decode(data_uri.split(",", 1)[1])

    assert png[:8] == b"\x89PNG\r\n\x1a\n"
