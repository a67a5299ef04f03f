"""Shared utilities."""

from usersync_auth.utils.json_serializers import json_serializer

__all__ = ["json_serializer"]
