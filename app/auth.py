from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header
from jose import ExpiredSignatureError, JWTError, jwt

from app.config import jwt_algorithm, jwt_secret
from app.errors import Forbidden, Unauthorized


@dataclass(frozen=True)
class Identity:
    id: str
    role: str = "customer"
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def verify_token(authorization: Optional[str] = Header(None)) -> Identity:
    if not authorization:
        raise Unauthorized("Missing bearer token")

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise Unauthorized("Invalid or missing token")

    try:
        claims = jwt.decode(parts[1], jwt_secret(), algorithms=[jwt_algorithm()])
    except ExpiredSignatureError:
        raise Unauthorized("Token expired", code="TOKEN_EXPIRED")
    except JWTError:
        raise Unauthorized("Invalid or missing token")

    subject = claims.get("sub") or claims.get("id")
    if not subject:
        raise Unauthorized("Token has no subject")

    return Identity(id=str(subject), role=claims.get("role", "customer"), email=claims.get("email"))


def require_admin(identity: Identity = Depends(verify_token)) -> Identity:
    if not identity.is_admin:
        raise Forbidden("Administrator role required")
    return identity
