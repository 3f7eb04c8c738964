"""Shared contracts and utilities for fleet-console."""

from .redis.client import RedisChannelClient

# Wire contracts live in shared.contracts
# Example: from shared.contracts.dto.resource import ResourceDTO, ResourceStatus

__all__ = ["RedisChannelClient"]
