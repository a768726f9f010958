"""Global pytest configuration.

Keeps local .env files and service credentials out of the test run.
"""

from __future__ import annotations

import os

for _var in ("ENCRYPTION_KEY", "VAPID_PUBLIC_KEY", "VAPID_PRIVATE_KEY", "EVENT_STORE_TOKEN"):
    os.environ.pop(_var, None)

os.environ.setdefault("BEACON_ENV", "test")
