# cdadmin/core/domain.py
from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Any, Dict


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILURE = "failure"
    CANCEL = "cancel"
    SKIPPED = "skipped"


class OrgRole(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


# ============================================================================
# TASKS
# ============================================================================

@dataclass
class TaskStep:
    """One pipeline step as reported back by the worker function."""
    run: str = ""
    step_count: Optional[str] = None
    status: str = TaskStatus.PENDING.value

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TaskStep":
        return cls(
            run=data.get("run", ""),
            step_count=data.get("stepCount"),
            status=data.get("status", TaskStatus.PENDING.value),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"run": self.run, "stepCount": self.step_count, "status": self.status}


@dataclass
class Task:
    id: str
    app_id: str = ""
    status: str = TaskStatus.PENDING.value
    steps: list[TaskStep] = field(default_factory=list)
    trigger_payload: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


# ============================================================================
# APPLICATIONS / ORGS / USERS
# ============================================================================

@dataclass
class Application:
    """
    A repository bound to an org, with named deployment environments.

    ``environment`` maps an environment name to a loosely structured dict
    (arbitrary config keys, optional ``secrets`` and ``latest_task``).
    """
    id: str
    owner_org_id: str
    provider: str
    owner: str = ""
    repo_name: str = ""
    repo_url: str = ""
    environment: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    description: str = ""


@dataclass
class Organization:
    id: str
    name: str
    user_id: str
    role: str = OrgRole.MEMBER.value
    secrets: Dict[str, Any] = field(default_factory=dict)
    description: str = ""

    @property
    def is_owner(self) -> bool:
        return self.role == OrgRole.OWNER.value


@dataclass
class User:
    id: str
    username: str = ""
    email: str = ""
    password: str = ""
    secrets: Dict[str, Any] = field(default_factory=dict)
    # provider name -> {"access_token": ..., "owner": ...}
    third_part: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def provider_token(self, provider: str) -> str:
        return (self.third_part.get(provider) or {}).get("access_token") or ""

    def provider_owner(self, provider: str) -> str:
        return (self.third_part.get(provider) or {}).get("owner") or ""


@dataclass
class CommitInfo:
    sha: str
    message: str = ""


# ============================================================================
# TRIGGER PAYLOAD
# ============================================================================

@dataclass
class Authorization:
    dispatch_org_id: str
    app_id: str
    owner: str = ""
    access_token: str = ""
    secrets: Dict[str, Any] = field(default_factory=dict)
    # keys added by the worker or webhooks; carried through unchanged
    extra: Dict[str, Any] = field(default_factory=dict)

    _KEYS = ("dispatchOrgId", "appId", "owner", "accessToken", "secrets")

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.extra)
        data.update({
            "dispatchOrgId": self.dispatch_org_id,
            "appId": self.app_id,
            "owner": self.owner,
            "accessToken": self.access_token,
            "secrets": self.secrets,
        })
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Authorization":
        return cls(
            dispatch_org_id=data.get("dispatchOrgId", ""),
            app_id=data.get("appId", ""),
            owner=data.get("owner", ""),
            access_token=data.get("accessToken", ""),
            secrets=dict(data.get("secrets") or {}),
            extra={k: v for k, v in data.items() if k not in cls._KEYS},
        )


@dataclass
class TriggerPayload:
    """
    Fully resolved input handed to the worker function for one task.

    Persisted verbatim (``to_dict()``) as ``Task.trigger_payload`` by the
    worker, and read back by redeploy.  Keys this model does not name are
    kept in ``extra`` so a redeployed payload carries everything the
    stored one had.
    """
    task_id: str
    provider: str
    clone_url: str
    authorization: Authorization
    ref: str
    commit: str = ""
    message: str = ""
    environment: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    env_name: Optional[str] = None
    custom_inputs: Optional[Dict[str, Any]] = None
    redelivery: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    _KEYS = (
        "taskId", "provider", "cloneUrl", "authorization", "ref", "commit",
        "message", "environment", "envName", "customInputs", "redelivery",
    )

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.extra)
        data.update({
            "taskId": self.task_id,
            "provider": self.provider,
            "cloneUrl": self.clone_url,
            "authorization": self.authorization.to_dict(),
            "ref": self.ref,
            "commit": self.commit,
            "message": self.message,
            "environment": self.environment,
            "envName": self.env_name,
        })
        if self.custom_inputs is not None:
            data["customInputs"] = self.custom_inputs
        if self.redelivery is not None:
            data["redelivery"] = self.redelivery
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TriggerPayload":
        data = copy.deepcopy(data)
        return cls(
            task_id=data.get("taskId", ""),
            provider=data.get("provider", ""),
            clone_url=data.get("cloneUrl", ""),
            authorization=Authorization.from_dict(data.get("authorization") or {}),
            ref=data.get("ref", ""),
            commit=data.get("commit", ""),
            message=data.get("message", ""),
            environment=data.get("environment") or {},
            env_name=data.get("envName"),
            custom_inputs=data.get("customInputs"),
            redelivery=data.get("redelivery"),
            extra={k: v for k, v in data.items() if k not in cls._KEYS},
        )
