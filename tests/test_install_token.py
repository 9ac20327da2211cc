import json

from shoplink.install_token import (
    InstallClaims,
    sign_install_token,
    verify_install_token,
)
from shoplink.signing import b64url_encode, hmac_sign


SECRET = "install-secret"
NOW = 1_700_000_000


def token_for(payload, secret=SECRET):
    segment = b64url_encode(json.dumps(payload))
    return f"{segment}.{b64url_encode(hmac_sign(secret, segment))}"


def test_valid_token():
    token = sign_install_token(SECRET, "user_1", "exp_A", expires_in=300, now=NOW)
    claims = verify_install_token(token, SECRET, "exp_A", now_ms=NOW * 1000)
    assert claims == InstallClaims(sub="user_1", experience_id="exp_A", exp=NOW + 300)


def test_wrong_experience_is_rejected():
    token = sign_install_token(SECRET, "user_1", "exp_A", now=NOW)
    assert verify_install_token(token, SECRET, "exp_B", now_ms=NOW * 1000) is None


def test_expired_token_is_rejected_even_if_signed():
    token = sign_install_token(SECRET, "user_1", "exp_A", expires_in=300, now=NOW)
    assert verify_install_token(token, SECRET, "exp_A", now_ms=(NOW + 300) * 1000) is None
    assert verify_install_token(token, SECRET, "exp_A", now_ms=(NOW + 299) * 1000)


def test_token_in_the_past_is_rejected_with_real_clock():
    token = sign_install_token(SECRET, "user_1", "exp_A", expires_in=-1)
    assert verify_install_token(token, SECRET, "exp_A") is None


def test_tampered_payload_is_rejected():
    token = sign_install_token(SECRET, "user_1", "exp_A", now=NOW)
    payload_segment, signature = token.split(".")
    for index in range(len(payload_segment)):
        flipped = chr(ord(payload_segment[index]) ^ 1)
        tampered = payload_segment[:index] + flipped + payload_segment[index + 1 :]
        assert (
            verify_install_token(f"{tampered}.{signature}", SECRET, "exp_A", now_ms=NOW * 1000)
            is None
        )


def test_wrong_secret_is_rejected():
    token = sign_install_token("other-secret", "user_1", "exp_A", now=NOW)
    assert verify_install_token(token, SECRET, "exp_A", now_ms=NOW * 1000) is None


def test_segment_count_must_be_two():
    token = sign_install_token(SECRET, "user_1", "exp_A", now=NOW)
    assert verify_install_token(token + ".extra", SECRET, "exp_A", now_ms=NOW * 1000) is None
    assert verify_install_token(token.split(".")[0], SECRET, "exp_A", now_ms=NOW * 1000) is None
    assert verify_install_token("", SECRET, "exp_A") is None
    assert verify_install_token(None, SECRET, "exp_A") is None


def test_exp_must_be_present_and_numeric():
    for payload in (
        {"sub": "user_1", "experienceId": "exp_A"},
        {"sub": "user_1", "experienceId": "exp_A", "exp": "9999999999"},
        {"sub": "user_1", "experienceId": "exp_A", "exp": True},
        {"sub": "user_1", "experienceId": "exp_A", "exp": None},
    ):
        assert verify_install_token(token_for(payload), SECRET, "exp_A", now_ms=NOW * 1000) is None


def test_signed_non_object_payload_is_rejected():
    segment = b64url_encode(json.dumps(["exp_A"]))
    token = f"{segment}.{b64url_encode(hmac_sign(SECRET, segment))}"
    assert verify_install_token(token, SECRET, "exp_A", now_ms=NOW * 1000) is None


def test_exp_must_be_finite():
    for exp in ("NaN", "Infinity"):
        raw = '{"sub": "user_1", "experienceId": "exp_A", "exp": %s}' % exp
        segment = b64url_encode(raw)
        token = f"{segment}.{b64url_encode(hmac_sign(SECRET, segment))}"
        assert verify_install_token(token, SECRET, "exp_A", now_ms=10**16) is None
