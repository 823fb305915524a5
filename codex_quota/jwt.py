"""Unverified JWT payload decoding for OpenAI access and id tokens."""

import base64
import binascii
import json
from typing import Optional

JWT_CLAIM = "https://api.openai.com/auth"
JWT_PROFILE = "https://api.openai.com/profile"


def decode_jwt(token: Optional[str]) -> Optional[dict]:
    """Return the payload of a JWT without verifying it, or None.

    >>> import base64, json
    >>> body = base64.urlsafe_b64encode(json.dumps({"sub": "x"}).encode()).decode().rstrip("=")
    >>> decode_jwt(f"h.{body}.s")
    {'sub': 'x'}
    >>> decode_jwt("not-a-jwt") is None
    True
    """
    if not isinstance(token, str):
        return None
    parts = token.split(".")
    if len(parts) != 3:
        return None
    segment = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        payload = json.loads(base64.urlsafe_b64decode(segment.encode("ascii")))
    except (binascii.Error, ValueError, UnicodeDecodeError):
        return None
    return payload if isinstance(payload, dict) else None


def extract_account_id(token: Optional[str]) -> Optional[str]:
    payload = decode_jwt(token) or {}
    auth = payload.get(JWT_CLAIM) or {}
    value = auth.get("chatgpt_account_id") if isinstance(auth, dict) else None
    return value if isinstance(value, str) and value else None


def extract_profile(token: Optional[str]) -> dict:
    """Email, plan type and user id claims (each may be None)."""
    payload = decode_jwt(token) or {}
    auth = payload.get(JWT_CLAIM) or {}
    profile = payload.get(JWT_PROFILE) or {}
    email = profile.get("email") if isinstance(profile, dict) else None
    if email is None:
        email = payload.get("email")
    return {
        "email": email,
        "plan_type": auth.get("chatgpt_plan_type") if isinstance(auth, dict) else None,
        "user_id": auth.get("chatgpt_user_id") if isinstance(auth, dict) else None,
    }
