import hashlib
import hmac
import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from .database import get_db
from .domain.scheduling.repository import SchedulingRepository
from .models import Tenant
from .shared.validators import validate_owner_token

logger = logging.getLogger(__name__)

security = HTTPBearer()

OWNER_TOKEN_HEADER = "X-Booking-Session"


def hash_api_key(api_key: str) -> str:
    """sha256 hex digest stored in Tenant.admin_api_key_hash"""
    return hashlib.sha256(api_key.encode()).hexdigest()


def get_tenant(tenant: str, db: Session = Depends(get_db)) -> Tenant:
    """Resolve the `{tenant}` path segment (slug) to an active tenant"""
    found = SchedulingRepository.get_tenant_by_slug(db, tenant)
    if not found:
        raise HTTPException(status_code=404, detail="Salon not found")
    return found


def get_owner_token(
    x_booking_session: Optional[str] = Header(default=None, alias=OWNER_TOKEN_HEADER),
) -> Optional[str]:
    """Opaque browsing-session id supplied by the booking widget, if any"""
    if not x_booking_session:
        return None
    try:
        return validate_owner_token(x_booking_session)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


def require_owner_token(owner_token: Optional[str] = Depends(get_owner_token)) -> str:
    if not owner_token:
        raise HTTPException(
            status_code=400, detail=f"Missing {OWNER_TOKEN_HEADER} header. Please reload the page."
        )
    return owner_token


def get_admin_tenant(
    tenant: Tenant = Depends(get_tenant),
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Tenant:
    """Authenticate salon administration calls with the tenant's API key"""
    if not tenant.admin_api_key_hash:
        logger.warning(f"🔒 Admin access attempted for tenant {tenant.slug} without an API key configured")
        raise HTTPException(status_code=403, detail="Administration is not enabled for this salon")

    presented = hash_api_key(credentials.credentials)
    if not hmac.compare_digest(presented, tenant.admin_api_key_hash):
        logger.warning(f"🔒 Invalid admin API key for tenant {tenant.slug}")
        raise HTTPException(status_code=401, detail="Invalid API key")
    return tenant
