from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
from jose import JWTError, jwt
from fastapi import HTTPException, status
from app.core.config import settings
import secrets
import string

ACCESS_TOKEN = "access"
REFRESH_TOKEN = "refresh"


def _credentials_error(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _issue_token(user_id: int, token_type: str, lifetime: timedelta) -> str:
    now = datetime.now(timezone.utc)
    claims = {
        "sub": str(user_id),
        "type": token_type,
        "jti": secrets.token_hex(16),
        "iat": now,
        "exp": now + lifetime,
    }
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def create_access_token(user_id: int, expires_delta: Optional[timedelta] = None) -> str:
    return _issue_token(
        user_id, ACCESS_TOKEN, expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )


def create_refresh_token(user_id: int) -> str:
    return _issue_token(user_id, REFRESH_TOKEN, timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS))


def decode_token(token: str, expected_type: str = ACCESS_TOKEN) -> Dict[str, Any]:
    """
    Validate signature, expiry and token type.

    Raises a 401 for anything that is not a live token of the expected type.
    """
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        raise _credentials_error()
    if payload.get("type") != expected_type or payload.get("sub") is None or payload.get("jti") is None:
        raise _credentials_error()
    return payload


def revocation_key(payload: Dict[str, Any]) -> str:
    return f"revoked_token:{payload['jti']}"


def remaining_lifetime(payload: Dict[str, Any]) -> int:
    """Seconds until the token expires, at least one so Redis accepts the TTL"""
    expires_at = datetime.fromtimestamp(payload["exp"], tz=timezone.utc)
    return max(int((expires_at - datetime.now(timezone.utc)).total_seconds()), 1)


def generate_otp(length: int = None) -> str:
    if length is None:
        length = settings.OTP_LENGTH
    return ''.join(secrets.choice(string.digits) for _ in range(length))


def mask_phone(phone: str) -> str:
    """Mobile numbers are logged and echoed with only the last 4 digits"""
    if len(phone) < 4:
        return "****"
    return f"******{phone[-4:]}"


def mask_account_number(account_number: str) -> str:
    if len(account_number) < 4:
        return "****"
    return f"{'X' * (len(account_number) - 4)}{account_number[-4:]}"
