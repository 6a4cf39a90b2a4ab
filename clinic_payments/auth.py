from typing import Optional

from fastapi import Header, HTTPException
from jose import JWTError, jwt

from clinic_payments.config import get_settings


def verify_token(authorization: Optional[str] = Header(None)) -> str:
    """Returns the acting user id (the token's ``sub`` claim)."""
    try:
        scheme, token = (authorization or "").split()
        if scheme.lower() != "bearer":
            raise ValueError("unsupported scheme")
        claims = jwt.decode(token, get_settings().jwt_secret, algorithms=["HS256"])
        subject = claims["sub"]
    except (ValueError, KeyError, JWTError):
        raise HTTPException(status_code=401, detail="Invalid or missing token")
    return str(subject)
