"""
Short lived token proving the host session asked to install a shop
for a specific experience.

Format is `{payload}.{signature}`, both base64url.  The signature is the
HMAC of the payload *segment* (the encoded string), not of the decoded json.
"""
import binascii
import json
import logging
import math
import time
from dataclasses import dataclass

from .signing import b64url_encode, b64url_decode, hmac_sign, constant_time_equal

logger = logging.getLogger(__name__)


DEFAULT_LIFETIME_IN_SECONDS = 5 * 60


@dataclass
class InstallClaims:
    # Who asked for the install, as identified by the host.
    sub: str
    experience_id: str
    # Unix seconds.
    exp: int


def sign_install_token(
    secret, sub, experience_id, expires_in=DEFAULT_LIFETIME_IN_SECONDS, now=None
):
    now = time.time() if now is None else now
    payload = {"sub": sub, "experienceId": experience_id, "exp": int(now) + expires_in}
    payload_segment = b64url_encode(json.dumps(payload))
    return f"{payload_segment}.{b64url_encode(hmac_sign(secret, payload_segment))}"


def verify_install_token(token, secret, expected_experience_id, now_ms=None):
    """Return `InstallClaims` if the token is good, otherwise None.

    We don't say why a token was rejected, any failure is just None.
    """
    if not token or not secret:
        return None
    parts = token.split(".")
    if len(parts) != 2:
        return None
    payload_segment, signature_segment = parts

    expected_signature = b64url_encode(hmac_sign(secret, payload_segment))
    if not constant_time_equal(signature_segment, expected_signature):
        return None

    try:
        payload = json.loads(b64url_decode(payload_segment).decode("utf8"))
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return None
    if not isinstance(payload, dict):
        return None

    if payload.get("experienceId") != expected_experience_id:
        return None

    exp = payload.get("exp")
    # bool is an int, but not a timestamp.
    if isinstance(exp, bool) or not isinstance(exp, (int, float)):
        return None
    # json.loads lets NaN and Infinity through.
    if not math.isfinite(exp):
        return None
    now_ms = time.time() * 1000 if now_ms is None else now_ms
    if now_ms >= exp * 1000:
        logger.debug("Install token expired.")
        return None

    return InstallClaims(
        sub=payload.get("sub"), experience_id=payload["experienceId"], exp=exp
    )
