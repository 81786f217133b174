"""
Bearer-token identity for the payment routes.

Tokens are issued by the association site's login flow (HS256, shared
``JWT_SECRET``) and carry the caller's e-mail and per-tenant roles:

    {"sub": "...", "email": "...", "tenant_roles": {"<tenant id>": "ADMIN"}}
"""

import enum
from dataclasses import dataclass, field
from typing import Dict, Optional

from fastapi import Depends, Header, HTTPException
from jose import JWTError, jwt

from alumni_payments.config import get_settings


class TenantRole(str, enum.Enum):
    MEMBER = "MEMBER"
    EDITOR = "EDITOR"
    ADMIN = "ADMIN"


ROLE_RANK = {TenantRole.MEMBER: 1, TenantRole.EDITOR: 2, TenantRole.ADMIN: 3}


@dataclass
class CurrentUser:
    id: str
    email: Optional[str] = None
    tenant_roles: Dict[str, TenantRole] = field(default_factory=dict)
    platform_admin: bool = False

    def has_tenant_role(self, tenant_id: str, required: TenantRole) -> bool:
        if self.platform_admin:
            return True
        role = self.tenant_roles.get(tenant_id)
        return role is not None and ROLE_RANK[role] >= ROLE_RANK[required]


def decode_token(token: str) -> CurrentUser:
    secret = get_settings().jwt_secret
    if not secret:
        raise JWTError("JWT_SECRET is not configured")
    claims = jwt.decode(token, secret, algorithms=["HS256"])
    roles = {}
    for tenant_id, role in (claims.get("tenant_roles") or {}).items():
        try:
            roles[tenant_id] = TenantRole(role)
        except ValueError:
            continue
    return CurrentUser(
        id=str(claims.get("sub", "")),
        email=claims.get("email"),
        tenant_roles=roles,
        platform_admin=bool(claims.get("platform_admin", False)),
    )


def get_current_user(authorization: Optional[str] = Header(None)) -> Optional[CurrentUser]:
    """The caller, or None when no Authorization header was sent."""
    if not authorization:
        return None
    try:
        scheme, token = authorization.split()
        if scheme.lower() != "bearer":
            raise ValueError("unsupported scheme")
        return decode_token(token)
    except (ValueError, JWTError):
        raise HTTPException(status_code=401, detail={"error": "Invalid or missing token"})


def verify_token(user: Optional[CurrentUser] = Depends(get_current_user)) -> CurrentUser:
    if user is None:
        raise HTTPException(status_code=401, detail={"error": "Authentication required"})
    return user


def require_tenant_role(required: TenantRole):
    def dependency(tenant_id: str, user: CurrentUser = Depends(verify_token)) -> CurrentUser:
        if not user.has_tenant_role(tenant_id, required):
            raise HTTPException(status_code=403, detail={"error": f"{required.value} role required"})
        return user

    return dependency
