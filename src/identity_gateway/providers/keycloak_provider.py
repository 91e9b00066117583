"""
Keycloak Provider - identity provider backed by the Keycloak admin REST API
Creates accounts, checks credentials with the password grant and ends user sessions
"""

import time
from typing import Any, Dict, List, Optional

import httpx
from loguru import logger

from src.config import KeycloakSettings
from src.identity_gateway.exceptions import ConflictError, DependencyError

from .base_provider import BaseIdentityProvider, IdentitySummary, NewIdentity

DEFAULT_ROLES = ("USER", "ADMIN")


class KeycloakIdentityProvider(BaseIdentityProvider):
    """Keycloak admin API client with an explicit timeout on every request"""

    name = "keycloak"

    def __init__(self, settings: KeycloakSettings, client: Optional[httpx.Client] = None):
        self.settings = settings
        self.base_url = settings.server_url
        self.realm = settings.realm
        self.client = client or httpx.Client(timeout=settings.timeout_seconds)
        self._admin_token: Optional[str] = None
        self._admin_token_expires_at = 0.0

    # -- plumbing -------------------------------------------------------

    def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            return self.client.request(
                method, url, timeout=self.settings.timeout_seconds, **kwargs
            )
        except httpx.HTTPError as e:
            logger.error(f"Keycloak request {method} {url} failed: {e}")
            raise DependencyError(self.name) from e

    def _token_url(self, realm: str) -> str:
        return f"{self.base_url}/realms/{realm}/protocol/openid-connect/token"

    def _admin_url(self, path: str = "") -> str:
        return f"{self.base_url}/admin/realms/{self.realm}{path}"

    def _get_admin_token(self) -> str:
        if self._admin_token and time.monotonic() < self._admin_token_expires_at:
            return self._admin_token

        if self.settings.admin_username:
            realm = self.settings.admin_realm
            data = {
                "grant_type": "password",
                "client_id": "admin-cli",
                "username": self.settings.admin_username,
                "password": self.settings.admin_password,
            }
        else:
            realm = self.realm
            data = {
                "grant_type": "client_credentials",
                "client_id": self.settings.client_id,
                "client_secret": self.settings.client_secret,
            }

        response = self._request("POST", self._token_url(realm), data=data)
        if response.status_code != 200:
            logger.error(f"Keycloak admin token request failed: {response.status_code}")
            raise DependencyError(self.name, "Identity provider authentication failed")

        payload = response.json()
        self._admin_token = payload["access_token"]
        # Refresh a little before Keycloak expires the token
        self._admin_token_expires_at = time.monotonic() + max(
            int(payload.get("expires_in", 60)) - 10, 0
        )
        return self._admin_token

    def _admin_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self._get_admin_token()}"}

    def _find_user_id(self, username: str) -> Optional[str]:
        response = self._request(
            "GET",
            self._admin_url("/users"),
            params={"username": username, "exact": "true"},
            headers=self._admin_headers(),
        )
        if response.status_code != 200:
            raise DependencyError(self.name, f"User search failed: {response.status_code}")
        users = response.json()
        if not users:
            return None
        return users[0]["id"]

    # -- provider API ---------------------------------------------------

    def create_user(self, identity: NewIdentity) -> str:
        logger.info(f"Creating user in Keycloak: {identity.username}")
        representation: Dict[str, Any] = {
            "username": identity.username,
            "email": identity.email,
            "firstName": identity.first_name,
            "lastName": identity.last_name,
            "enabled": True,
            "emailVerified": False,
            # National ID kept as a custom attribute for compliance lookups
            "attributes": {"saIdNumber": [identity.national_id]},
            "credentials": [
                {"type": "password", "value": identity.password, "temporary": False}
            ],
        }
        response = self._request(
            "POST",
            self._admin_url("/users"),
            json=representation,
            headers=self._admin_headers(),
        )
        if response.status_code == 409:
            logger.warning(f"Keycloak already has a user named '{identity.username}'")
            raise ConflictError()
        if response.status_code != 201:
            logger.error(
                f"Failed to create user in Keycloak. Status: {response.status_code}"
            )
            raise DependencyError(self.name, "Failed to create identity provider account")

        location = response.headers.get("Location", "")
        user_id = location.rstrip("/").rsplit("/", 1)[-1] if location else identity.username
        logger.info(f"User created successfully in Keycloak: {identity.username}")
        return user_id

    def verify_credentials(self, username: str, password: str) -> bool:
        data = {
            "grant_type": "password",
            "client_id": self.settings.client_id,
            "username": username,
            "password": password,
        }
        if self.settings.client_secret:
            data["client_secret"] = self.settings.client_secret

        response = self._request("POST", self._token_url(self.realm), data=data)
        if response.status_code == 200:
            return True
        if response.status_code in (400, 401):
            # invalid_grant: unknown user, wrong password, disabled or unverified account
            return False
        logger.error(f"Keycloak credential check failed: {response.status_code}")
        raise DependencyError(self.name, "Credential verification unavailable")

    def invalidate_sessions(self, username: str) -> bool:
        logger.info(f"Invalidating tokens for user: {username}")
        user_id = self._find_user_id(username)
        if user_id is None:
            logger.warning(f"User not found in Keycloak for token invalidation: {username}")
            return False

        response = self._request(
            "POST",
            self._admin_url(f"/users/{user_id}/logout"),
            headers=self._admin_headers(),
        )
        if response.status_code not in (200, 204):
            raise DependencyError(self.name, f"Logout failed: {response.status_code}")
        logger.info(f"Successfully invalidated tokens for user: {username}")
        return True

    def list_users(self, first: int = 0, max_results: int = 100) -> List[IdentitySummary]:
        response = self._request(
            "GET",
            self._admin_url("/users"),
            params={"first": first, "max": max_results},
            headers=self._admin_headers(),
        )
        if response.status_code != 200:
            raise DependencyError(self.name, f"User listing failed: {response.status_code}")
        return [
            IdentitySummary(
                id=item["id"],
                username=item["username"],
                email=item.get("email"),
                enabled=item.get("enabled", True),
            )
            for item in response.json()
        ]

    def delete_user(self, username: str) -> bool:
        user_id = self._find_user_id(username)
        if user_id is None:
            return False
        response = self._request(
            "DELETE",
            self._admin_url(f"/users/{user_id}"),
            headers=self._admin_headers(),
        )
        if response.status_code not in (200, 204):
            raise DependencyError(self.name, f"User deletion failed: {response.status_code}")
        logger.info(f"Deleted Keycloak user '{username}'")
        return True

    # -- start-up provisioning -------------------------------------------

    def ensure_setup(self) -> None:
        """
        Create the realm, the confidential client and default roles if missing.

        Requires admin credentials for the master realm. Failures are logged
        so that a misconfigured Keycloak never blocks application start-up.
        """
        try:
            self._ensure_realm()
            self._ensure_client()
            self._ensure_roles()
            logger.info("Keycloak setup completed successfully")
        except DependencyError as e:
            logger.error(f"Failed to setup Keycloak: {e}")

    def _ensure_realm(self) -> None:
        response = self._request("GET", self._admin_url(), headers=self._admin_headers())
        if response.status_code == 200:
            logger.info(f"Realm '{self.realm}' already exists")
            return
        if response.status_code != 404:
            raise DependencyError(self.name, f"Realm lookup failed: {response.status_code}")

        logger.info(f"Creating realm: {self.realm}")
        realm = {
            "realm": self.realm,
            "displayName": "Nomcebo Bank",
            "enabled": True,
            # Only allow registration through this API
            "registrationAllowed": False,
            "loginWithEmailAllowed": True,
            "duplicateEmailsAllowed": False,
            "resetPasswordAllowed": True,
            "editUsernameAllowed": False,
            "accessTokenLifespan": 900,
            "refreshTokenMaxReuse": 0,
            "ssoSessionMaxLifespan": 43200,
        }
        created = self._request(
            "POST", f"{self.base_url}/admin/realms", json=realm, headers=self._admin_headers()
        )
        if created.status_code != 201:
            raise DependencyError(self.name, f"Realm creation failed: {created.status_code}")

    def _ensure_client(self) -> None:
        response = self._request(
            "GET",
            self._admin_url("/clients"),
            params={"clientId": self.settings.client_id},
            headers=self._admin_headers(),
        )
        if response.status_code == 200 and response.json():
            logger.info(f"Client '{self.settings.client_id}' already exists")
            return

        logger.info(f"Creating client: {self.settings.client_id}")
        client = {
            "clientId": self.settings.client_id,
            "name": "Nomcebo Bank Auth Service",
            "enabled": True,
            "publicClient": False,
            "directAccessGrantsEnabled": True,
            "serviceAccountsEnabled": True,
            "authorizationServicesEnabled": False,
        }
        if self.settings.client_secret:
            client["secret"] = self.settings.client_secret
        created = self._request(
            "POST", self._admin_url("/clients"), json=client, headers=self._admin_headers()
        )
        if created.status_code != 201:
            logger.error(f"Failed to create client. Status: {created.status_code}")

    def _ensure_roles(self) -> None:
        for role in DEFAULT_ROLES:
            response = self._request(
                "GET", self._admin_url(f"/roles/{role}"), headers=self._admin_headers()
            )
            if response.status_code == 200:
                continue
            created = self._request(
                "POST",
                self._admin_url("/roles"),
                json={"name": role},
                headers=self._admin_headers(),
            )
            if created.status_code == 201:
                logger.info(f"Created realm role '{role}'")
            else:
                logger.error(f"Failed to create role '{role}'. Status: {created.status_code}")
