"""
Caller identity for the storefront API.

Customers are authenticated upstream by the identity provider; the gateway in
front of this service forwards the verified subject in X-User-Id (plus optional
email and name). Admin routes use a shared API key from the environment.
"""

import hmac
from typing import Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.config import get_config
from storefront.database import get_db
from storefront.errors import AuthenticationError
from storefront.logger import get_logger
from storefront.models import User

logger = get_logger("auth")


def get_or_create_user(db: Session, external_id: str, email: str = "", name: Optional[str] = None) -> User:
    """Local user row for an identity-provider subject, created on first sight."""
    user = db.execute(select(User).where(User.external_id == external_id)).scalar_one_or_none()
    if user is not None:
        return user

    user = User(external_id=external_id, email=email or "", name=name)
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        # A concurrent request created the same user first
        db.rollback()
        return db.execute(select(User).where(User.external_id == external_id)).scalar_one()
    logger.info(f"Created local user for subject {external_id}")
    return user


def get_current_user(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    x_user_email: Optional[str] = Header(None, alias="X-User-Email"),
    x_user_name: Optional[str] = Header(None, alias="X-User-Name"),
    db: Session = Depends(get_db),
) -> User:
    """FastAPI dependency: the authenticated customer."""
    if not x_user_id or not x_user_id.strip():
        raise AuthenticationError("Not authenticated")
    return get_or_create_user(db, x_user_id.strip(), x_user_email or "", x_user_name)


def verify_admin_api_key(api_key: Optional[str] = Header(None, alias="X-Admin-API-Key")):
    """
    Verify the admin API key from environment (ADMIN_API_KEY).
    Do not hardcode; set in .env and do not commit .env.
    """
    expected_key = get_config().admin_api_key
    if not expected_key or not expected_key.strip():
        raise HTTPException(status_code=503, detail="Admin API key not configured (set ADMIN_API_KEY in .env)")
    if not api_key or not hmac.compare_digest(api_key.encode("utf-8"), expected_key.encode("utf-8")):
        raise AuthenticationError("Invalid admin API key")
    return api_key
