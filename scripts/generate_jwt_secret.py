"""Generate a strong JWT_SECRET_KEY (512 bits, for HS512) for env.properties."""

from __future__ import annotations

import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from src.identity_gateway.utils.jwt_utils import generate_secret_key  # noqa: E402


def main() -> int:
    print(generate_secret_key())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
