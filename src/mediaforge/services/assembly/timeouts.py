"""Upload timeout budget as a function of object size."""

import math

MIB = 1024 * 1024

BASE_TIMEOUT_SECONDS = 600
BASE_SIZE_BYTES = 200 * MIB
STEP_SIZE_BYTES = 100 * MIB
STEP_TIMEOUT_SECONDS = 300
MAX_TIMEOUT_SECONDS = 3600


def timeout_seconds(size_bytes: int | None) -> int:
    """Soft timeout handed to the streaming transport.

    600s up to 200 MiB, plus 300s per started 100 MiB above that, capped at
    one hour. Missing, zero or negative sizes get the base budget.
    """
    if not size_bytes or size_bytes <= BASE_SIZE_BYTES:
        return BASE_TIMEOUT_SECONDS

    steps = math.ceil((size_bytes - BASE_SIZE_BYTES) / STEP_SIZE_BYTES)
    return min(BASE_TIMEOUT_SECONDS + steps * STEP_TIMEOUT_SECONDS, MAX_TIMEOUT_SECONDS)


def hard_timeout_seconds(size_bytes: int | None, grace_seconds: int = 60) -> int:
    """Supervisory deadline after which the transport is killed."""
    return timeout_seconds(size_bytes) + grace_seconds
