"""
Authentication module: JWT bearer tokens identifying the calling user.
"""

from .jwt_auth import (
    Principal,
    bearer_scheme,
    create_access_token,
    decode_access_token,
    get_current_principal,
)

__all__ = [
    "Principal",
    "bearer_scheme",
    "create_access_token",
    "decode_access_token",
    "get_current_principal",
]
