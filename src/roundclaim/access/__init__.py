"""Administrative policy objects — pause gate, capabilities, ownership."""

from roundclaim.access.gate import AccessControl, Capability, CapabilityToken, PauseGate

__all__ = [
    "AccessControl",
    "Capability",
    "CapabilityToken",
    "PauseGate",
]
