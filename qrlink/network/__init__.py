"""Wi-Fi join state machine and the Linux platform collaborators behind it."""
from .join import NetworkJoinStateMachine
from .platform import PlatformError
from .strategies import EphemeralRequestStrategy, JoinStrategy, LegacyProfileStrategy

__all__ = [
    "EphemeralRequestStrategy",
    "JoinStrategy",
    "LegacyProfileStrategy",
    "NetworkJoinStateMachine",
    "PlatformError",
]
