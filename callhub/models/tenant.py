"""Organization context for the current caller."""

from dataclasses import dataclass
from typing import Optional


@dataclass
class OrganizationContext:
    """The caller's organization and user, resolved upstream."""
    organization_id: str
    user_id: Optional[str] = None
