"""
Signature helpers shared by the oauth callback, webhooks and install tokens.

Every comparison of a signature goes through `constant_time_equal`.
"""
import base64
import hashlib
import hmac
from urllib.parse import urlencode


def _to_bytes(value):
    if isinstance(value, str):
        return value.encode("utf8")
    return value


def hmac_sign(secret, data):
    """Raw HMAC-SHA256 digest of `data` using `secret`."""
    return hmac.new(_to_bytes(secret), _to_bytes(data), hashlib.sha256).digest()


def constant_time_equal(a, b):
    """Compare two signatures, str or bytes, without leaking where they differ.

    A length mismatch or a missing value is simply a mismatch.
    """
    if a is None or b is None:
        return False
    a = _to_bytes(a)
    b = _to_bytes(b)
    if len(a) != len(b):
        return False
    return hmac.compare_digest(a, b)


def b64url_encode(data):
    """Base64url without padding, the way node's `base64url` writes it."""
    return base64.urlsafe_b64encode(_to_bytes(data)).rstrip(b"=").decode("ascii")


def b64url_decode(segment):
    segment = _to_bytes(segment)
    # Restore padding that was stripped.
    return base64.urlsafe_b64decode(segment + b"=" * (-len(segment) % 4))


def encode_params_for_hmac(param_items):
    """
    Encode params with special shopify rules.

    RULE #1: ("k[]", [1,2]) is converted to ("k", '"1", "2"')
    RULE #2: safe chars are ":/" for whatever reason.
    """
    params_to_encode = []
    for (k, v) in sorted(param_items):
        if k == "hmac":
            continue
        elif k.endswith("[]"):
            k = k[:-2]
            if isinstance(v, (list, tuple)):
                v = ", ".join(['"{}"'.format(v_item) for v_item in v])
        params_to_encode.append((k, v))

    return urlencode(params_to_encode, safe=":/")


def calculate_hmac(api_secret, param_items):
    # Hex digest for the sorted parameters using the secret.
    return hmac_sign(api_secret, encode_params_for_hmac(param_items)).hex()


def verify_callback_hmac(api_secret, params):
    """Check the `hmac` query param shopify sends along with redirects."""
    hmac_to_check = params.get("hmac")
    if not hmac_to_check:
        return False
    return constant_time_equal(calculate_hmac(api_secret, params.items()), hmac_to_check)


def compute_webhook_hmac(api_secret, raw_body):
    """Base64 HMAC-SHA256 over the exact bytes of the webhook body."""
    return base64.b64encode(hmac_sign(api_secret, raw_body)).decode("ascii")


def verify_webhook_hmac(api_secret, raw_body, hmac_header):
    if not hmac_header:
        return False
    return constant_time_equal(compute_webhook_hmac(api_secret, raw_body), hmac_header)
