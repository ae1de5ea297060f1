"""
Named aiohttp sessions shared across requests.

``fc`` carries Function Compute calls (invoke, stop invocation);
``provider`` carries GitHub / Gitee REST calls.  Each profile has its
own timeout and connection cap so a slow git provider cannot starve
dispatches.  ``close_all_sessions()`` runs on app shutdown.
"""
from __future__ import annotations

from typing import Callable, NamedTuple

import aiohttp

from cdadmin.config import settings
from cdadmin.infra.logging_config import get_logger

logger = get_logger(__name__)

USER_AGENT = "cdadmin"


class _Profile(NamedTuple):
    total_timeout: Callable[[], float]
    limit: int


_PROFILES = {
    "fc": _Profile(lambda: settings.fc_timeout_seconds, 20),
    "provider": _Profile(lambda: settings.provider_timeout_seconds, 10),
}

_sessions: dict[str, aiohttp.ClientSession] = {}


def get_session(name: str) -> aiohttp.ClientSession:
    """Session for profile ``name``; recreated if it was closed."""
    session = _sessions.get(name)
    if session is not None and not session.closed:
        return session

    profile = _PROFILES[name]
    session = aiohttp.ClientSession(
        timeout=aiohttp.ClientTimeout(total=profile.total_timeout(), connect=5),
        connector=aiohttp.TCPConnector(limit=profile.limit, keepalive_timeout=30),
        headers={"User-Agent": USER_AGENT},
    )
    _sessions[name] = session
    logger.debug(f"HTTP session '{name}' created (limit={profile.limit})")
    return session


def get_fc_session() -> aiohttp.ClientSession:
    return get_session("fc")


def get_provider_session() -> aiohttp.ClientSession:
    return get_session("provider")


async def close_all_sessions() -> None:
    while _sessions:
        name, session = _sessions.popitem()
        if not session.closed:
            await session.close()
            logger.debug(f"HTTP session '{name}' closed")
