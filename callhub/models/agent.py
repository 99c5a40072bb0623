"""Agent and sending-number records read by the tool subsystem."""

from dataclasses import dataclass, field
from typing import Dict, Any, Optional


@dataclass
class Agent:
    """A voice agent. Its tool-id list lives on the voice platform."""
    id: str
    organization_id: str
    name: str
    assistant_id: Optional[str] = None  # external assistant id on the voice platform


@dataclass
class PhoneNumber:
    """An organization-owned number usable as an SMS sender."""
    id: str
    organization_id: str
    phone_number: str  # E.164
    provider: str  # "twilio"
    credentials: Dict[str, Any] = field(default_factory=dict)  # {"accountSid", "authToken"}

    @property
    def has_credentials(self) -> bool:
        return bool(self.credentials.get("accountSid") and self.credentials.get("authToken"))
