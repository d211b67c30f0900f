"""
Security Module for the Site Supply Service
===========================================
- Secret key management
- Bearer token issue/verification
- Role-based access control with fine-grained permissions
- Audit logging of supply-chain transitions
"""

import os
import json
import hashlib
import secrets
import warnings
from datetime import datetime, timedelta
from typing import Optional, Set

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from .db import SessionLocal


# =============================================================================
# CONFIGURATION - Secure Defaults
# =============================================================================

def get_secret_key() -> str:
    """
    Get secret key from environment with validation.
    NEVER use a default secret key in production!
    """
    secret = os.getenv("SITESUPPLY_SECRET_KEY")

    if not secret:
        env = os.getenv("ENVIRONMENT", "development")
        if env == "production":
            raise RuntimeError(
                "CRITICAL: SITESUPPLY_SECRET_KEY environment variable must be set in production! "
                "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(64))\""
            )
        warnings.warn(
            "Using development secret key. Set SITESUPPLY_SECRET_KEY for production!",
            RuntimeWarning
        )
        # Deterministic in development so tokens survive hot-reload
        secret = hashlib.sha256(b"sitesupply-dev-insecure-key").hexdigest()

    if len(secret) < 32:
        raise RuntimeError("SITESUPPLY_SECRET_KEY must be at least 32 characters")

    return secret


SECRET_KEY = get_secret_key()
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("TOKEN_EXPIRE_MINUTES", "60"))


# =============================================================================
# TOKEN MANAGEMENT
# =============================================================================

bearer_scheme = HTTPBearer(auto_error=False)


def create_access_token(
    data: dict,
    expires_delta: Optional[timedelta] = None
) -> str:
    """Create a signed access token. Tokens are issued by the identity service; this is used by tooling and tests."""
    to_encode = data.copy()

    now = datetime.utcnow()
    expire = now + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))

    to_encode.update({
        "exp": expire,
        "iat": now,
        "jti": secrets.token_urlsafe(16),
        "type": "access"
    })

    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> dict:
    """
    Decode and validate a JWT token.

    Raises:
        HTTPException: If token is invalid or expired
    """
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"}
        )
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"}
        )


# =============================================================================
# ROLE-BASED ACCESS CONTROL (RBAC)
# =============================================================================

class Permission:
    """Fine-grained permissions for site supply operations"""

    REQUEST_VIEW = "request:view"
    REQUEST_CREATE = "request:create"
    REQUEST_APPROVE = "request:approve"  # approve and reject

    PURCHASE_VIEW = "purchase:view"
    PURCHASE_SEND = "purchase:send"
    GRN_RECEIVE = "grn:receive"

    STOCK_VIEW = "stock:view"
    STOCK_ADJUST = "stock:adjust"

    INVOICE_VIEW = "invoice:view"
    INVOICE_GENERATE = "invoice:generate"

    CATALOG_VIEW = "catalog:view"


ROLE_PERMISSIONS: dict[str, Set[str]] = {
    "engineer": {
        Permission.REQUEST_VIEW, Permission.REQUEST_CREATE,
        Permission.PURCHASE_VIEW, Permission.GRN_RECEIVE,
        Permission.STOCK_VIEW,
        Permission.CATALOG_VIEW,
    },

    "manager": {
        Permission.REQUEST_VIEW, Permission.REQUEST_APPROVE,
        Permission.PURCHASE_VIEW, Permission.GRN_RECEIVE,
        Permission.STOCK_VIEW, Permission.STOCK_ADJUST,
        Permission.INVOICE_VIEW, Permission.INVOICE_GENERATE,
        Permission.CATALOG_VIEW,
    },

    "owner": {
        Permission.REQUEST_VIEW, Permission.REQUEST_APPROVE,
        Permission.PURCHASE_VIEW,
        Permission.STOCK_VIEW, Permission.STOCK_ADJUST,
        Permission.INVOICE_VIEW, Permission.INVOICE_GENERATE,
        Permission.CATALOG_VIEW,
    },

    "purchase_manager": {
        Permission.REQUEST_VIEW,
        Permission.PURCHASE_VIEW, Permission.PURCHASE_SEND,
        Permission.CATALOG_VIEW,
    },
}


def get_role_permissions(role: str) -> Set[str]:
    """Get permissions for a role"""
    return ROLE_PERMISSIONS.get(role, set())


# =============================================================================
# DEPENDENCY INJECTION
# =============================================================================

def get_db():
    """Database session dependency"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db)
):
    """
    Get current authenticated user from the bearer token.
    """
    from . import models  # Avoid circular import

    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"}
        )

    payload = decode_token(credentials.credentials)

    username = payload.get("sub")
    if username is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"}
        )

    user = db.query(models.User).filter(models.User.username == username).first()

    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"}
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User account is disabled"
        )

    return user


def require_permission(*required_permissions: str):
    """
    Dependency that requires user to have specific permissions.
    Project membership is checked by the services.
    """
    async def permission_checker(current_user=Depends(get_current_user)):
        user_permissions = get_role_permissions(current_user.role)

        missing = set(required_permissions) - user_permissions
        if missing:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permissions: {', '.join(sorted(missing))}"
            )

        return current_user

    return permission_checker


# =============================================================================
# AUDIT LOGGING
# =============================================================================

class SecurityAuditLog:
    """Audit trail for supply-chain transitions"""

    @staticmethod
    def log_sensitive_action(
        db: Session,
        user_id: int,
        action: str,
        entity_type: str,
        entity_id: int,
        details: dict
    ):
        """Add an audit row to the caller's unit of work (committed with it)"""
        from .models_supply import AuditLog

        log = AuditLog(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            new_values=json.dumps(details, default=str),
            user_id=user_id
        )
        db.add(log)
        return log
