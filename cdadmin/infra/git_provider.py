# cdadmin/infra/git_provider.py
"""
Minimal git provider REST clients.

Only what dispatch needs: resolve a branch / tag ref to its head commit
(sha + message).  Both providers expose the same commit shape::

    GET /repos/{owner}/{repo}/commits/{ref}
    -> {"sha": "...", "commit": {"message": "..."}}
"""
from __future__ import annotations

import aiohttp

from cdadmin.config import settings
from cdadmin.core.domain import CommitInfo
from cdadmin.infra.http_client import get_provider_session
from cdadmin.infra.logging_config import get_logger

logger = get_logger(__name__)

SUPPORTED_PROVIDERS = ("github", "gitee")

_REF_PREFIXES = ("refs/heads/", "refs/tags/")


class GitProviderError(Exception):
    """Provider API call failed or returned an unusable response."""

    def __init__(self, provider: str, message: str, status: int | None = None):
        self.provider = provider
        self.status = status
        super().__init__(f"{provider}: {message}" + (f" (status={status})" if status else ""))


def short_ref(ref: str) -> str:
    """``refs/heads/main`` -> ``main``; anything else unchanged."""
    for prefix in _REF_PREFIXES:
        if ref.startswith(prefix):
            return ref[len(prefix):]
    return ref


class _BaseProvider:
    name = ""

    def __init__(self, access_token: str, session: aiohttp.ClientSession | None = None):
        self.access_token = access_token
        self._session = session

    @property
    def session(self) -> aiohttp.ClientSession:
        return self._session or get_provider_session()

    def commit_url(self, owner: str, repo: str, ref: str) -> str:
        raise NotImplementedError

    def request_kwargs(self) -> dict:
        raise NotImplementedError

    async def get_ref_commit(self, owner: str, repo: str, ref: str) -> CommitInfo:
        url = self.commit_url(owner, repo, short_ref(ref))
        async with self.session.get(url, **self.request_kwargs()) as resp:
            if resp.status >= 300:
                text = await resp.text()
                raise GitProviderError(self.name, text[:200] or resp.reason or "request failed", resp.status)
            data = await resp.json()

        sha = (data or {}).get("sha")
        if not sha:
            raise GitProviderError(self.name, f"no commit found for ref '{ref}'")
        message = ((data.get("commit") or {}).get("message")) or ""
        logger.debug(f"{self.name} resolved {owner}/{repo}@{ref} -> {sha[:8]}")
        return CommitInfo(sha=sha, message=message)


class GithubProvider(_BaseProvider):
    name = "github"

    def commit_url(self, owner: str, repo: str, ref: str) -> str:
        return f"{settings.github_api_url.rstrip('/')}/repos/{owner}/{repo}/commits/{ref}"

    def request_kwargs(self) -> dict:
        return {
            "headers": {
                "Accept": "application/vnd.github+json",
                "Authorization": f"token {self.access_token}",
            }
        }


class GiteeProvider(_BaseProvider):
    name = "gitee"

    def commit_url(self, owner: str, repo: str, ref: str) -> str:
        return f"{settings.gitee_api_url.rstrip('/')}/repos/{owner}/{repo}/commits/{ref}"

    def request_kwargs(self) -> dict:
        return {"params": {"access_token": self.access_token}}


_PROVIDERS = {
    "github": GithubProvider,
    "gitee": GiteeProvider,
}


def git_provider(provider: str, access_token: str) -> _BaseProvider:
    """Build a provider client; unknown providers raise ``GitProviderError``."""
    cls = _PROVIDERS.get(provider)
    if cls is None:
        raise GitProviderError(provider, f"unsupported provider, expected one of {list(SUPPORTED_PROVIDERS)}")
    return cls(access_token)
