"""HTTP middleware for Beacon."""

from beacon.api.middleware.correlation import REQUEST_ID_HEADER, CorrelationMiddleware

__all__ = ["CorrelationMiddleware", "REQUEST_ID_HEADER"]
