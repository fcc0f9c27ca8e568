"""
Authentication Middleware and Dependencies

Access tokens are issued by the organization's SSO provider and verified
here with python-jose. Roles are read from the top-level "roles" claim and
from Keycloak's realm_access / resource_access claims.

Provides:
- get_current_principal: Validated principal from the bearer token (401 otherwise)
- RoleChecker: Dependency for role validation
- require_admin: Admin API guard
- get_current_member: Member record for the principal (created on first login)
"""

from typing import Optional, List
import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from config import Settings, get_settings
from database import get_db
from database.models import MemberDB
from reconciliation.errors import InvalidAssignment
from sentry_integration import set_member

logger = logging.getLogger(__name__)

# Security scheme
security = HTTPBearer(auto_error=False)


# ==================== MODELS ====================

class AuthPrincipal(BaseModel):
    """Authenticated principal as asserted by the identity provider"""
    subject: str
    email: str = ""
    name: str = ""
    username: str = ""
    roles: List[str] = Field(default_factory=list)

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def is_admin(self) -> bool:
        return self.has_role(get_settings().ADMIN_ROLE)


# ==================== TOKEN DECODING ====================

def _collect_roles(claims: dict) -> List[str]:
    roles = list(claims.get("roles") or [])
    roles.extend((claims.get("realm_access") or {}).get("roles") or [])
    for client in (claims.get("resource_access") or {}).values():
        roles.extend((client or {}).get("roles") or [])
    # Preserve order, drop duplicates
    return list(dict.fromkeys(roles))


def decode_token(token: str, settings: Optional[Settings] = None) -> Optional[AuthPrincipal]:
    """
    Verify an access token and build the principal.
    Returns None if the token is invalid, expired or misses the subject or
    the email claim (member records are keyed by email).
    """
    settings = settings or get_settings()
    if not settings.OIDC_SIGNING_KEY:
        logger.error("OIDC_SIGNING_KEY is not configured, rejecting token")
        return None

    options = {"verify_aud": bool(settings.OIDC_AUDIENCE)}
    try:
        claims = jwt.decode(
            token,
            settings.OIDC_SIGNING_KEY,
            algorithms=settings.oidc_algorithms_list,
            audience=settings.OIDC_AUDIENCE or None,
            issuer=settings.OIDC_ISSUER or None,
            options=options,
        )
    except JWTError as e:
        logger.warning(f"Token verification failed: {e}")
        return None

    subject = claims.get("sub")
    if not subject:
        return None

    email = claims.get("email")
    if not email:
        logger.warning("Token has no email claim", extra={"subject": subject})
        return None

    return AuthPrincipal(
        subject=subject,
        email=email,
        name=claims.get("name") or "",
        username=claims.get("preferred_username") or "",
        roles=_collect_roles(claims),
    )


# ==================== DEPENDENCIES ====================

async def get_current_principal(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> AuthPrincipal:
    """
    Extract the principal from the bearer token.
    Raises 401 if no token or invalid token.
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"}
        )

    principal = decode_token(credentials.credentials)
    if not principal:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"}
        )

    return principal


class RoleChecker:
    """
    Dependency class for role-based access control.

    Usage:
        @router.get("/admin-only")
        async def admin_endpoint(principal: AuthPrincipal = Depends(require_admin)):
            ...
    """

    def __init__(self, allowed_roles: List[str]):
        self.allowed_roles = allowed_roles

    async def __call__(
        self,
        principal: AuthPrincipal = Depends(get_current_principal),
    ) -> AuthPrincipal:
        if not any(principal.has_role(role) for role in self.allowed_roles):
            logger.warning(
                "Access denied",
                extra={"subject": principal.subject, "required_roles": self.allowed_roles}
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Forbidden - admin access required"
            )

        return principal


require_admin = RoleChecker([get_settings().ADMIN_ROLE])


async def _resolve_member(service, principal: AuthPrincipal) -> MemberDB:
    try:
        return await service.get_or_create_for_principal(principal)
    except InvalidAssignment as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"}
        )


async def get_current_member(
    principal: AuthPrincipal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> MemberDB:
    """Resolve (or create) the member record behind the principal."""
    from services.members import MemberService

    service = MemberService(db)
    return await _resolve_member(service, principal)


async def get_admin_member(
    principal: AuthPrincipal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> MemberDB:
    """Member record of the acting admin (used as actor in audit entries)."""
    from services.members import MemberService

    service = MemberService(db)
    member = await _resolve_member(service, principal)
    set_member(member.id, role="admin")
    return member
