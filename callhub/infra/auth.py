"""Organization context resolution and access checks.

Session handling lives upstream; the gateway forwards the resolved
organization and user in request headers.
"""

from typing import Optional
from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader

from callhub.models.tenant import OrganizationContext

organization_header = APIKeyHeader(name="X-Organization-ID", auto_error=False)
user_header = APIKeyHeader(name="X-User-ID", auto_error=False)


async def get_organization_context(
    organization_id: Optional[str] = Security(organization_header),
    user_id: Optional[str] = Security(user_header),
) -> OrganizationContext:
    """
    Resolve the caller's organization context.

    Args:
        organization_id: Organization ID from the X-Organization-ID header
        user_id: User ID from the X-User-ID header

    Returns:
        OrganizationContext for the caller

    Raises:
        HTTPException: 401 if no organization is present
    """
    if not organization_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Organization context required. Provide X-Organization-ID header.",
        )
    return OrganizationContext(organization_id=organization_id, user_id=user_id)


def require_organization_access(
    organization_id: str,
    ctx: OrganizationContext,
) -> None:
    """
    Verify that the caller belongs to the organization in the path.

    Raises:
        HTTPException: 403 if access is denied
    """
    if ctx.organization_id != organization_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied: caller does not belong to this organization",
        )
