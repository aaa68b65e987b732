"""Caller authentication - shared automation secret, automation JWT, admin token."""

import hmac
from datetime import datetime, timedelta

from fastapi import Header, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from ticketflow.config import settings

security = HTTPBearer(auto_error=False)

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_HOURS = 24


def _matches(candidate: str | None, expected: str) -> bool:
    if not candidate or not expected:
        return False
    return hmac.compare_digest(candidate.encode(), expected.encode())


def create_automation_token(subject: str = "scheduler") -> str:
    """Create a JWT a scheduler can present instead of the raw secret."""
    expire = datetime.utcnow() + timedelta(hours=ACCESS_TOKEN_EXPIRE_HOURS)
    payload = {"sub": subject, "exp": expire, "type": "automation"}
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def _is_automation_token(token: str) -> bool:
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except JWTError:
        return False
    return payload.get("type") == "automation" and bool(payload.get("sub"))


def _bearer_ok(credentials: HTTPAuthorizationCredentials | None) -> bool:
    if not credentials:
        return False
    token = credentials.credentials
    return _matches(token, settings.automation_secret) or _is_automation_token(token)


def is_automation_caller(x_automation_secret: str | None, credentials: HTTPAuthorizationCredentials | None) -> bool:
    """The shared secret header, or a bearer that is the secret or an automation JWT."""
    return _matches(x_automation_secret, settings.automation_secret) or _bearer_ok(credentials)


def verify_admin_caller(
    x_admin_token: str | None = Header(None),
    credentials: HTTPAuthorizationCredentials | None = Security(security),
) -> None:
    if _matches(x_admin_token, settings.admin_token) or _bearer_ok(credentials):
        return
    raise HTTPException(status_code=401, detail="Unauthorized")
