"""Error kinds surfaced by the quota monitor."""

from typing import Optional


class QuotaMonitorError(Exception):
    """Base class for quota monitor errors."""


class UnknownServiceError(QuotaMonitorError):
    """Raised when a service code is not in the current catalog snapshot."""

    def __init__(self, service_code: str):
        super().__init__(f"No service with such code: {service_code}")
        self.service_code = service_code


class UnknownQuotaError(QuotaMonitorError):
    """Raised when a quota code is not loaded for a known service."""

    def __init__(self, service_code: str, quota_code: str):
        super().__init__(f"No quota with such code: {quota_code} (service {service_code})")
        self.service_code = service_code
        self.quota_code = quota_code


class CatalogUnavailableError(QuotaMonitorError):
    """Raised when the quota catalog could not be read.

    The previous catalog snapshot is kept.
    """

    def __init__(self, operation: str, collaborator: str, detail: Optional[str] = None):
        message = f"Catalog {operation} failed in {collaborator}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.operation = operation
        self.collaborator = collaborator


class CollectionFailedError(QuotaMonitorError):
    """Raised when a usage source or the metric source fails during a refresh.

    The whole refresh is aborted and the previous usage maps are kept.
    """

    def __init__(self, source: str, operation: str = "get_usage", detail: Optional[str] = None):
        message = f"Usage collection failed in {source} ({operation})"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.source = source
        self.operation = operation


class ServiceNotFoundError(LookupError):
    """Raised by a catalog provider for a service code it does not know.

    Kept distinct from transport errors so the monitor can tell the two apart.
    """

    def __init__(self, service_code: str):
        super().__init__(f"Service not found: {service_code}")
        self.service_code = service_code
