"""
Base provider interface for identity providers
Ensures consistent API across Keycloak and the local development provider
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional


@dataclass(frozen=True)
class NewIdentity:
    """Account data pushed to the identity provider at registration"""

    username: str
    email: str
    password: str
    national_id: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None


@dataclass(frozen=True)
class IdentitySummary:
    """Account as listed by the identity provider"""

    id: str
    username: str
    email: Optional[str] = None
    enabled: bool = True


class BaseIdentityProvider(ABC):
    """
    Abstract base class for identity providers.

    Every method that talks to a remote system raises DependencyError when
    the call fails or times out; implementations never retry.
    """

    name = "identity_provider"

    @abstractmethod
    def create_user(self, identity: NewIdentity) -> str:
        """Create the account and return the provider's user id"""

    @abstractmethod
    def verify_credentials(self, username: str, password: str) -> bool:
        """True if the provider accepts the credentials, False if it rejects them"""

    @abstractmethod
    def invalidate_sessions(self, username: str) -> bool:
        """Log the user out of every provider session; False if the user is unknown"""

    @abstractmethod
    def list_users(self, first: int = 0, max_results: int = 100) -> List[IdentitySummary]:
        """Page through provider accounts"""

    @abstractmethod
    def delete_user(self, username: str) -> bool:
        """Remove an account (used to compensate a failed registration)"""

    def ensure_setup(self) -> None:
        """Hook for one-time provisioning at start-up (override in subclass)"""
