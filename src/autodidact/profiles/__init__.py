"""Agent profile models and loader exports."""

from .loader import ProfileLoadError, ProfileLoader, load_profiles
from .models import DEFAULT_PROFILE, AgentProfile

__all__ = [
    "AgentProfile",
    "DEFAULT_PROFILE",
    "ProfileLoadError",
    "ProfileLoader",
    "load_profiles",
]
