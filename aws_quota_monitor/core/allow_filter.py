"""Allow filter restricting which services and quotas are tracked."""

from types import MappingProxyType
from typing import FrozenSet, Iterable, Mapping, Optional


class AllowFilter:
    """Immutable mapping of service code to allowed quota codes.

    ``None`` for a service means every quota of that service is allowed.
    Services missing from the mapping are disabled, unless the filter was
    built with :meth:`allow_all`.
    """

    def __init__(self, services: Optional[Mapping[str, Optional[Iterable[str]]]] = None):
        if services is None:
            self._services = None
        else:
            self._services = MappingProxyType({
                code: (frozenset(quotas) if quotas is not None else None)
                for code, quotas in services.items()
            })

    @classmethod
    def allow_all(cls) -> "AllowFilter":
        return cls(None)

    @classmethod
    def parse(cls, text: str) -> "AllowFilter":
        """Parse ``"ec2:L-1,L-2;cloudformation;s3"``.

        Empty text allows everything.
        """
        text = (text or "").strip()
        if not text:
            return cls.allow_all()

        services = {}
        for chunk in text.split(';'):
            chunk = chunk.strip()
            if not chunk:
                continue
            code, sep, quota_list = chunk.partition(':')
            code = code.strip()
            if not code:
                raise ValueError(f"missing service code in allow filter entry '{chunk}'")
            if code in services:
                raise ValueError(f"service '{code}' listed more than once in allow filter")
            if sep:
                quotas = [q.strip() for q in quota_list.split(',') if q.strip()]
                services[code] = quotas
            else:
                services[code] = None
        return cls(services)

    @property
    def restricts_services(self) -> bool:
        return self._services is not None

    @property
    def service_codes(self) -> Optional[FrozenSet[str]]:
        """Enabled service codes, or None when every service is enabled."""
        if self._services is None:
            return None
        return frozenset(self._services)

    def allows_service(self, service_code: str) -> bool:
        return self._services is None or service_code in self._services

    def allowed_quotas(self, service_code: str) -> Optional[FrozenSet[str]]:
        if self._services is None:
            return None
        return self._services.get(service_code)

    def allows_quota(self, service_code: str, quota_code: str) -> bool:
        if not self.allows_service(service_code):
            return False
        allowed = self.allowed_quotas(service_code)
        return allowed is None or quota_code in allowed

    def __eq__(self, other):
        if not isinstance(other, AllowFilter):
            return NotImplemented
        if self._services is None or other._services is None:
            return self._services is None and other._services is None
        return dict(self._services) == dict(other._services)

    def __hash__(self):
        if self._services is None:
            return hash(None)
        return hash(frozenset(self._services.items()))

    def __repr__(self):
        if self._services is None:
            return "AllowFilter(all)"
        parts = []
        for code in sorted(self._services):
            quotas = self._services[code]
            parts.append(code if quotas is None else f"{code}:{','.join(sorted(quotas))}")
        return f"AllowFilter({';'.join(parts)})"
