# cdadmin/admin/models.py
"""
Pydantic request/response models for the admin API.

These live *outside* the transport layer so the services can
validate payloads without depending on FastAPI.  Required fields are
checked by the services (not here) so a missing ``appId`` surfaces as
the same ``ValidationError`` whether it came over HTTP or not.
"""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Any


class _CamelModel(BaseModel):
    """Accept both camelCase (wire) and snake_case field names."""

    model_config = ConfigDict(populate_by_name=True)


# ---------------------------------------------------------------------------
# Dispatch requests
# ---------------------------------------------------------------------------

class ManualTaskRequest(_CamelModel):
    """Trigger a pipeline run by hand."""

    app_id: str = Field(default="", alias="appId")
    commit_id: str | None = Field(default=None, alias="commitId")
    ref: str | None = None
    message: str | None = None
    inputs: dict[str, Any] | None = None
    env_name: str | None = Field(default=None, alias="envName")


class RedeployRequest(_CamelModel):
    """Re-run an earlier task's payload under a new task id."""

    task_id: str = Field(default="", alias="taskId")
    app_id: str = Field(default="", alias="appId")


class CancelTaskRequest(_CamelModel):
    """Stop a running task."""

    task_id: str = Field(default="", alias="taskId")


class DispatchResult(BaseModel):
    request_id: str | None = Field(default=None, serialization_alias="x-fc-request-id")
    task_id: str = Field(serialization_alias="taskId")


# ---------------------------------------------------------------------------
# User requests / responses
# ---------------------------------------------------------------------------

class BindTokenRequest(BaseModel):
    """Store a git provider access token on the calling user."""

    provider: str = Field(..., min_length=1)
    token: str = Field(..., min_length=1)

    @field_validator("provider")
    @classmethod
    def provider_must_be_known(cls, v: str) -> str:
        allowed = {"github", "gitee"}
        if v not in allowed:
            raise ValueError(f"provider must be one of {sorted(allowed)}")
        return v


class OrgView(BaseModel):
    """Org as returned to clients (owner secrets stripped)."""

    id: str
    name: str
    role: str
    user_id: str
    description: str = ""


class UserView(BaseModel):
    """User as returned to clients (credentials and password stripped)."""

    id: str
    username: str = ""
    email: str = ""
    is_auth: bool = Field(default=False, serialization_alias="isAuth")
    github_name: str = ""
    list_orgs: list[OrgView] | None = Field(default=None, serialization_alias="listOrgs")
