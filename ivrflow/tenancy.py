"""
Tenant resolution.

Maps the called number to the owning tenant. An unresolved number is
fatal for the call; there is no fallback tenant.
"""

import re
from abc import ABC, abstractmethod
from typing import Dict, Optional

import structlog

logger = structlog.get_logger(__name__)


def normalize_phone(value: Optional[str]) -> str:
    """Strip formatting and ensure a leading ``+``."""
    digits = re.sub(r"[^\d+]", "", value or "")
    if not digits:
        return ""
    return digits if digits.startswith("+") else f"+{digits}"


class TenantResolver(ABC):
    """Resolves the tenant that owns a called number."""

    @abstractmethod
    async def resolve_tenant(self, callee: Optional[str]) -> Optional[str]:
        pass


class StaticTenantResolver(TenantResolver):
    """Resolver backed by a fixed number-to-tenant map."""

    def __init__(self, numbers: Optional[Dict[str, str]] = None):
        self._numbers = {normalize_phone(k): v for k, v in (numbers or {}).items()}

    def register(self, number: str, tenant_id: str) -> None:
        self._numbers[normalize_phone(number)] = tenant_id

    async def resolve_tenant(self, callee: Optional[str]) -> Optional[str]:
        tenant_id = self._numbers.get(normalize_phone(callee))
        if tenant_id is None:
            logger.warning("tenant_not_resolved", callee=callee)
        return tenant_id


__all__ = ["TenantResolver", "StaticTenantResolver", "normalize_phone"]
