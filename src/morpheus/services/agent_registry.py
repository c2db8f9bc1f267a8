"""Capability registry mapping unique names to worker instances.

Constructed once at startup and handed to the router; it is read-only during
normal operation.
"""

import logging
from typing import Dict, List, Optional

from ..models.capability import CapabilityRegistration


logger = logging.getLogger(__name__)


class RegistrationError(Exception):
    """Raised when a capability cannot be registered."""
    pass


class CapabilityRegistry:
    """Registry of capability workers keyed by name."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self._registrations: Dict[str, CapabilityRegistration] = {}

    def register(self, registration: CapabilityRegistration) -> None:
        """Register a capability.

        Args:
            registration: Capability to add

        Raises:
            RegistrationError: If the name is already taken
        """
        if registration.name in self._registrations:
            raise RegistrationError(f"Capability already registered: {registration.name}")
        self._registrations[registration.name] = registration
        self.logger.info(f"Registered capability: {registration.name} ({registration.kind.value})")

    def get(self, name: Optional[str]) -> Optional[CapabilityRegistration]:
        if not name:
            return None
        return self._registrations.get(name)

    def names(self) -> List[str]:
        return list(self._registrations.keys())

    def descriptions(self) -> Dict[str, str]:
        return {name: reg.description for name, reg in self._registrations.items()}

    def registrations(self) -> List[CapabilityRegistration]:
        return list(self._registrations.values())

    def __contains__(self, name: str) -> bool:
        return name in self._registrations

    def __len__(self) -> int:
        return len(self._registrations)
