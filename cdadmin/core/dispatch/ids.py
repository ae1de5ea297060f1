from __future__ import annotations

import uuid


def union_token() -> str:
    """
    Mint a task token correlating one dispatch with its async execution.

    32 lowercase hex chars from a random UUID4 (122 random bits), so it is
    URL-safe and usable as the stateful async invocation id.
    """
    return uuid.uuid4().hex
