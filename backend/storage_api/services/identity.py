"""Keycloak-backed identity directory.

Only the four calls the storage core depends on are implemented: verify a
bearer token, list users, read realm role mappings, delete a user.
Clients are created on first use, so constructing the directory never
touches the network.
"""
import logging
from dataclasses import dataclass, field
from typing import Optional

from keycloak import KeycloakAdmin, KeycloakOpenID
from keycloak.exceptions import KeycloakError

from storage_api.config import Settings
from storage_api.errors import Unauthorized, UpstreamIdentityError

logger = logging.getLogger(__name__)


@dataclass
class IdentityClaims:
    """Verified token subject."""
    subject_id: str
    username: Optional[str] = None
    email: Optional[str] = None
    roles: set[str] = field(default_factory=set)


@dataclass
class IdentityRecord:
    id: str
    username: str
    email: str = ""
    roles: set[str] = field(default_factory=set)


class KeycloakDirectory:
    """Identity directory adapter for one Keycloak realm."""

    def __init__(self, settings: Settings):
        self.server_url = settings.KEYCLOAK_URL.rstrip("/")
        self.realm = settings.KEYCLOAK_REALM
        self.client_id = settings.KEYCLOAK_CLIENT_ID
        self.client_secret = settings.KEYCLOAK_CLIENT_SECRET or None
        self.admin_user = settings.KEYCLOAK_ADMIN
        self.admin_password = settings.KEYCLOAK_ADMIN_PASSWORD
        self.admin_realm = settings.KEYCLOAK_ADMIN_REALM
        self._openid_client: Optional[KeycloakOpenID] = None
        self._admin_client: Optional[KeycloakAdmin] = None

    def _openid(self) -> KeycloakOpenID:
        if self._openid_client is None:
            self._openid_client = KeycloakOpenID(
                server_url=self.server_url,
                realm_name=self.realm,
                client_id=self.client_id,
                client_secret_key=self.client_secret,
            )
            logger.info(f"Initialized OpenID client for realm: {self.realm}")
        return self._openid_client

    def _admin(self) -> KeycloakAdmin:
        if self._admin_client is None:
            self._admin_client = KeycloakAdmin(
                server_url=self.server_url,
                username=self.admin_user,
                password=self.admin_password,
                realm_name=self.realm,
                user_realm_name=self.admin_realm,
            )
            logger.info(f"Initialized admin client for realm: {self.realm}")
        return self._admin_client

    async def verify_token(self, token: str) -> IdentityClaims:
        """Check signature and expiry against the realm key.

        Raises:
            Unauthorized: token unparseable, expired, badly signed, or the
                signing key could not be fetched.
        """
        try:
            claims = await self._openid().a_decode_token(token, validate=True)
        except Exception as e:
            logger.warning(f"Token verification failed: {e}")
            raise Unauthorized(f"Token verification failed: {e}") from e

        subject = claims.get("sub") if isinstance(claims, dict) else None
        if not subject:
            raise Unauthorized("Token has no subject")
        return IdentityClaims(
            subject_id=subject,
            username=claims.get("preferred_username"),
            email=claims.get("email"),
            roles=set((claims.get("realm_access") or {}).get("roles", [])),
        )

    async def list_users(self) -> list[IdentityRecord]:
        try:
            users = await self._admin().a_get_users({})
        except Exception as e:
            logger.error(f"Failed to get users: {e}")
            raise UpstreamIdentityError(f"Failed to get users: {e}") from e

        records = []
        for user in users:
            records.append(IdentityRecord(
                id=user["id"],
                username=user.get("username", ""),
                email=user.get("email") or "",
                roles=await self.get_roles(user["id"]),
            ))
        return records

    async def get_roles(self, user_id: str) -> set[str]:
        """Realm role names for the user. Empty on any error."""
        try:
            roles = await self._admin().a_get_realm_roles_of_user(user_id)
        except Exception as e:
            logger.error(f"Failed to get user roles for {user_id}: {e}")
            return set()
        return {role["name"] for role in roles if role.get("name")}

    async def delete_user(self, user_id: str) -> bool:
        """Delete the account. False when the provider no longer has it."""
        try:
            await self._admin().a_delete_user(user_id)
        except KeycloakError as e:
            if getattr(e, "response_code", None) == 404:
                logger.info(f"Keycloak user {user_id} already absent")
                return False
            logger.error(f"Keycloak delete user error: {e}")
            raise UpstreamIdentityError(f"Failed to delete user: {e}") from e
        except Exception as e:
            logger.error(f"Keycloak delete user error: {e}")
            raise UpstreamIdentityError(f"Failed to delete user: {e}") from e
        logger.info(f"Deleted Keycloak user {user_id}")
        return True
