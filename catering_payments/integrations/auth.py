"""Bearer token verification for authenticated checkouts."""
from dataclasses import dataclass
from typing import Optional

import jwt
import structlog

from catering_payments.core.exceptions import PaymentValidationError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CallerContext:
    """Who is asking for a payment session."""

    is_guest: bool
    user_id: Optional[str] = None

    @classmethod
    def guest(cls) -> "CallerContext":
        return cls(is_guest=True)

    @classmethod
    def authenticated(cls, user_id: str) -> "CallerContext":
        return cls(is_guest=False, user_id=user_id)


class TokenVerifier:
    """Verifies HS256 access tokens issued by the auth service."""

    def __init__(self, secret: str, audience: Optional[str] = "authenticated"):
        self.secret = secret
        self.audience = audience

    def verify(self, authorization: Optional[str]) -> CallerContext:
        """
        Resolve an ``Authorization`` header to an authenticated caller.

        Raises:
            PaymentValidationError: Header missing, malformed or not verifiable
        """
        if not authorization:
            raise PaymentValidationError(
                "Authorization header required for authenticated checkout"
            )
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            raise PaymentValidationError("Authorization header must be a bearer token")
        if not self.secret:
            logger.error("auth_secret_missing")
            raise PaymentValidationError("Authenticated checkout is not configured")

        try:
            claims = jwt.decode(
                token.strip(),
                self.secret,
                algorithms=["HS256"],
                audience=self.audience,
                options={"verify_aud": self.audience is not None},
            )
        except jwt.PyJWTError as e:
            logger.info("auth_token_rejected", error=str(e))
            raise PaymentValidationError("Invalid authorization token")

        user_id = claims.get("sub")
        if not user_id:
            raise PaymentValidationError("Invalid authorization token")
        return CallerContext.authenticated(str(user_id))
