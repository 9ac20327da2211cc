"""
The `state` value we hand to shopify on authorize and get back on callback.

It is not signed, shopify's callback hmac covers the whole query string
including `state`.
"""
import json
import secrets
import binascii

from .signing import b64url_encode, b64url_decode


NONCE_BYTES = 16


class InvalidStateError(ValueError):
    pass


def create_state(payload=None):
    """Merge a fresh nonce into `payload` and encode it as base64url json."""
    data = {"nonce": secrets.token_hex(NONCE_BYTES)}
    if payload:
        data.update(payload)
    return b64url_encode(json.dumps(data))


def decode_state(state):
    if not state:
        raise InvalidStateError("State is empty.")
    try:
        data = json.loads(b64url_decode(state).decode("utf8"))
    except (binascii.Error, UnicodeDecodeError, ValueError) as e:
        raise InvalidStateError(f"State could not be decoded: {e}") from e
    if not isinstance(data, dict):
        raise InvalidStateError("State is not an object.")
    return data
