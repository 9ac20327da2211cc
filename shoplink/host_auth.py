"""
Verify session tokens issued by the embedding host.

The host signs an HS256 JWT with `sub`, `role` and the `experiences` the
user can see.  We only need to answer "who is this" and "what can they do
in this experience".
"""
import logging
import re
from dataclasses import dataclass, field

import jwt
import zope.interface

from .interfaces import IHostSessionVerifier

logger = logging.getLogger(__name__)


ADMIN_ACCESS = "admin"


CUSTOMER_ACCESS = "customer"


NO_ACCESS = "no_access"


ADMIN_ROLES = ("admin", "owner")


@dataclass
class HostSession:
    sub: str
    role: str
    experiences: list = field(default_factory=list)

    def access_level(self, experience_id):
        if experience_id not in self.experiences:
            return NO_ACCESS
        elif self.role in ADMIN_ROLES:
            return ADMIN_ACCESS
        return CUSTOMER_ACCESS


def extract_bearer_token(auth_header):
    if not auth_header:
        return None
    result = re.match("^Bearer (.+)$", auth_header)
    return result.groups()[0] if result else None


@zope.interface.implementer(IHostSessionVerifier)
@dataclass
class HostSessionVerifier:
    secret: str
    jwt_leeway_in_seconds: int = 5

    def verify(self, token):
        """Return a `HostSession` or None if the token can't be trusted."""
        if not token or not self.secret:
            return None
        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=["HS256"],
                leeway=self.jwt_leeway_in_seconds,
                options={"require": ["sub"]},
            )
        except jwt.InvalidTokenError as e:
            logger.info(f"Host session token rejected: {e}")
            return None
        if not payload.get("role"):
            return None
        experiences = [
            value for value in payload.get("experiences") or [] if isinstance(value, str)
        ]
        return HostSession(
            sub=payload["sub"], role=payload["role"], experiences=experiences
        )
