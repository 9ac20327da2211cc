import time

import jwt

from shoplink.host_auth import (
    ADMIN_ACCESS,
    CUSTOMER_ACCESS,
    NO_ACCESS,
    HostSession,
    HostSessionVerifier,
    extract_bearer_token,
)


SECRET = "host-secret"


def encode(payload, secret=SECRET):
    return jwt.encode(payload, secret, algorithm="HS256")


def test_verify_good_token():
    verifier = HostSessionVerifier(SECRET)
    session = verifier.verify(
        encode({"sub": "user_1", "role": "admin", "experiences": ["exp_1", 7]})
    )
    assert session == HostSession(sub="user_1", role="admin", experiences=["exp_1"])


def test_verify_rejects_bad_tokens():
    verifier = HostSessionVerifier(SECRET)
    assert verifier.verify(None) is None
    assert verifier.verify("garbage") is None
    assert verifier.verify(encode({"sub": "user_1", "role": "admin"}, "wrong")) is None
    assert verifier.verify(encode({"role": "admin"})) is None
    assert verifier.verify(encode({"sub": "user_1"})) is None
    expired = encode({"sub": "user_1", "role": "admin", "exp": int(time.time()) - 60})
    assert verifier.verify(expired) is None


def test_verify_rejects_other_algorithms():
    token = jwt.encode({"sub": "user_1", "role": "admin"}, SECRET, algorithm="HS512")
    assert HostSessionVerifier(SECRET).verify(token) is None


def test_access_levels():
    admin = HostSession(sub="u", role="admin", experiences=["exp_1"])
    owner = HostSession(sub="u", role="owner", experiences=["exp_1"])
    member = HostSession(sub="u", role="member", experiences=["exp_1"])
    assert admin.access_level("exp_1") == ADMIN_ACCESS
    assert owner.access_level("exp_1") == ADMIN_ACCESS
    assert member.access_level("exp_1") == CUSTOMER_ACCESS
    assert admin.access_level("exp_2") == NO_ACCESS


def test_extract_bearer_token():
    assert extract_bearer_token("Bearer abc.def") == "abc.def"
    assert extract_bearer_token("Basic abc") is None
    assert extract_bearer_token("") is None
    assert extract_bearer_token(None) is None
