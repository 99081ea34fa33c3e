from __future__ import annotations

from typing import Any, Dict

import jwt

from svc_swap.config import settings


def _strip_bearer(auth: str) -> str:
    s = (auth or "").strip()
    if s.lower().startswith("bearer "):
        return s[7:].strip()
    return s


def decode_access_jwt(token: str) -> Dict[str, Any]:
    """
    Decode a user access JWT issued by the identity service.

    Input may be the raw token or 'Bearer <token>'. Any decode failure
    surfaces as ValueError("invalid_token: ...").
    """
    raw = _strip_bearer(token)
    if not raw:
        raise ValueError("invalid_token: empty")
    if not settings.JWT_SECRET:
        raise ValueError("invalid_token: JWT_SECRET not set")

    kwargs: Dict[str, Any] = {"algorithms": [settings.JWT_ALG]}
    if settings.JWT_AUDIENCE:
        kwargs["audience"] = settings.JWT_AUDIENCE
    if settings.JWT_ISSUER:
        kwargs["issuer"] = settings.JWT_ISSUER

    try:
        return jwt.decode(
            raw,
            settings.JWT_SECRET,
            options={"require": ["exp", "sub"], "verify_aud": bool(settings.JWT_AUDIENCE)},
            leeway=30,
            **kwargs,
        )
    except jwt.PyJWTError as e:
        raise ValueError(f"invalid_token: {e}") from e
