"""Public gateway resolution."""

from __future__ import annotations

from cidstore.gateway.resolver import FetchOptions, GatewayResolver, ResolvedUrl

__all__ = ["FetchOptions", "GatewayResolver", "ResolvedUrl"]
