# cdadmin/core/ports.py
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Protocol, Optional, Any, Callable

from cdadmin.core.domain import Task, Application, Organization, User, CommitInfo


# ============================================================================
# STORAGE
# ============================================================================

class TaskRepository(Protocol):
    async def get_task_detail(self, task_id: str) -> Optional[Task]: ...
    async def update_task(self, task_id: str, partial: dict) -> None: ...


class ApplicationRepository(Protocol):
    async def get_app_by_id(self, app_id: str) -> Optional[Application]: ...
    async def update_application(self, app_id: str, partial: dict) -> None: ...


class OrgRepository(Protocol):
    async def get_org_by_id(self, org_id: str) -> Optional[Organization]: ...
    async def get_owner_org_by_name(self, name: str) -> Optional[Organization]: ...
    async def list_by_user_id(self, user_id: str) -> list[Organization]: ...


class UserRepository(Protocol):
    async def get_user_by_id(self, user_id: str) -> Optional[User]: ...
    async def update_user_by_id(self, user_id: str, partial: dict) -> None: ...


# ============================================================================
# SOURCE PROVIDER
# ============================================================================

class GitProviderClient(Protocol):
    async def get_ref_commit(self, owner: str, repo: str, ref: str) -> CommitInfo:
        """Resolve a branch / tag ref to its head commit."""
        ...


GitProviderFactory = Callable[[str, str], GitProviderClient]
"""(provider, access_token) -> client"""


# ============================================================================
# REMOTE EXECUTION
# ============================================================================

@dataclass
class InvokeResponse:
    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: Any = None


class InvocationTransport(Protocol):
    async def invoke_function(
        self,
        service_name: str,
        function_name: str,
        body: str,
        headers: dict[str, str],
    ) -> InvokeResponse: ...

    async def put(self, path: str) -> InvokeResponse: ...
