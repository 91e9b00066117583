"""
Identity Gateway Utilities Package

National ID codec, token issuing/verification and password hashing.
"""

from .jwt_utils import (
    JWT_ALGORITHM,
    TokenClaims,
    TokenService,
    generate_secret_key,
)
from .national_id import (
    NationalIdCodec,
    NationalIdDetails,
    NationalIdError,
)
from .password_utils import get_password_hash, verify_password

__all__ = [
    "TokenService",
    "TokenClaims",
    "generate_secret_key",
    "JWT_ALGORITHM",
    "NationalIdCodec",
    "NationalIdDetails",
    "NationalIdError",
    "get_password_hash",
    "verify_password",
]
