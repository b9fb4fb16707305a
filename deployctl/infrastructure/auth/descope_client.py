from __future__ import annotations
from typing import Any, Dict, List, Optional
import logging

from descope import AuthException, DescopeClient
from fastapi import HTTPException, status

from deployctl.config import settings
from deployctl.schemas.auth import UserPrincipal

logger = logging.getLogger(__name__)


class DescopeAuthError(HTTPException):
    def __init__(self, detail: str, status_code: int = status.HTTP_401_UNAUTHORIZED):
        super().__init__(status_code=status_code, detail=detail)


class DescopeAuthClient:
    """
    Descope session validation for operator requests.
    Maps JWT roles and permissions onto the controller's RBAC model.
    """

    def __init__(self, project_id: Optional[str] = None):
        """Initialize the Descope client with project configuration."""
        project_id = project_id or settings.DESCOPE_PROJECT_ID
        if not project_id:
            logger.warning("⚠️ DESCOPE_PROJECT_ID not configured - authentication will be disabled")
            self.client = None
            return

        try:
            self.client = DescopeClient(project_id=project_id)
            logger.info(f"✅ Descope client initialized for project: {project_id}")
        except AuthException as error:
            logger.error(f"❌ Failed to initialize Descope client: {error}")
            self.client = None

    def is_configured(self) -> bool:
        """Check if Descope client is properly configured."""
        return self.client is not None

    def validate_session(self, session_token: str, refresh_token: Optional[str] = None) -> Dict[str, Any]:
        """
        Validate session token and optionally refresh if expired.

        Raises:
            DescopeAuthError: If validation fails
        """
        if not self.client:
            raise DescopeAuthError("Descope client not configured")

        try:
            if refresh_token:
                logger.info("🔄 Using validate_and_refresh_session...")
                jwt_response = self.client.validate_and_refresh_session(
                    session_token=session_token,
                    refresh_token=refresh_token
                )
            else:
                jwt_response = self.client.validate_session(session_token=session_token)
            logger.info("✅ Session validation successful")
            return jwt_response

        except AuthException as e:
            logger.error(f"❌ Session validation failed: {e}")
            raise DescopeAuthError(f"Session validation error: {e}")

    def extract_user_principal(self, jwt_response: Dict[str, Any], session_token: str) -> UserPrincipal:
        """
        Extract user principal from JWT response.

        Permissions come from the JWT directly; when none match, they are
        derived from the matched roles through ``ROLE_PERMISSIONS``.
        """
        user_id = jwt_response.get("sub") or jwt_response.get("userId")
        login_id = jwt_response.get("loginId") or jwt_response.get("email")
        name = jwt_response.get("name")

        roles = self.get_matched_roles(jwt_response, settings.AVAILABLE_ROLES)
        permissions = self.get_matched_permissions(jwt_response, settings.AVAILABLE_PERMISSIONS)

        if not permissions and roles:
            logger.info(f"🔍 No direct permissions found, deriving from roles: {roles}")
            derived: List[str] = []
            for role in roles:
                derived.extend(settings.ROLE_PERMISSIONS.get(role, []))
            permissions = sorted(set(derived))

        logger.info(f"🔍 Matched roles={roles} permissions={permissions}")

        return UserPrincipal(
            user_id=str(user_id) if user_id else "unknown",
            login_id=login_id or "unknown",
            name=name or "User",
            roles=roles,
            permissions=permissions,
            token=session_token,
        )

    def get_matched_permissions(self, jwt_response: Dict[str, Any], permissions_to_match: List[str]) -> List[str]:
        if not self.client:
            return []
        try:
            return self.client.get_matched_permissions(jwt_response, permissions_to_match)
        except AuthException as e:
            logger.error(f"❌ Could not get matched permissions - error: {e}")
            return []

    def get_matched_roles(self, jwt_response: Dict[str, Any], roles_to_match: List[str]) -> List[str]:
        if not self.client:
            return []
        try:
            return self.client.get_matched_roles(jwt_response, roles_to_match)
        except AuthException as e:
            logger.error(f"❌ Could not get matched roles - error: {e}")
            return []


# Global instance
descope_client = DescopeAuthClient()
