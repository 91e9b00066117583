import sys
import os

# Add project root to Python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "../..")))

from src.config import AuthSettings  # noqa: E402
from src.identity_gateway.models.database import get_session  # noqa: E402
from src.identity_gateway.services.lockout_service import AccountLockoutService  # noqa: E402
from src.identity_gateway.services.user_service import UserService  # noqa: E402


def clear_lockout(username: str, admin_username: str = "cli") -> bool:
    """Reset the failed-login counter and lock of one account. False if the user is unknown."""
    ledger = AccountLockoutService(AuthSettings.from_config())
    with get_session() as session:
        user = UserService().get_by_username(session, username)
        if user is None:
            print(f"User {username} NOT found.")
            return False
        was_locked = ledger.unlock(session, user, admin_username=admin_username)
        print(f"Lockout cleared for {username} (was locked: {was_locked}).")
        return True


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print("Usage: python src/scripts/clear_lockout.py <username>")
        sys.exit(2)
    sys.exit(0 if clear_lockout(sys.argv[1]) else 1)
