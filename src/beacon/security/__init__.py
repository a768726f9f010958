"""Security primitives for Beacon.

- RBAC: static role to action tables
- Encryption: AES-256-GCM for integration secrets at rest
- Signing: HMAC-SHA256 for outbound webhook payloads
- URL validation: outbound target checks for webhooks
"""

from beacon.security.rbac import Action, Role, has_permission
from beacon.security.signing import SIGNATURE_HEADER, sign_payload, verify_signature
from beacon.security.urls import UnsafeUrlError, is_safe_outbound_url, validate_outbound_url

__all__ = [
    "Action",
    "Role",
    "has_permission",
    "SIGNATURE_HEADER",
    "sign_payload",
    "verify_signature",
    "UnsafeUrlError",
    "validate_outbound_url",
    "is_safe_outbound_url",
]
