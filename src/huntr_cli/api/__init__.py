"""API client module."""

from huntr_cli.api.client import ApiError, HuntrApiClient, resolve_token
from huntr_cli.api.personal import HuntrPersonalApi

__all__ = ["ApiError", "HuntrApiClient", "HuntrPersonalApi", "resolve_token"]
