"""Pytest configuration and shared fixtures"""
import sys
from pathlib import Path

import pytest

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from cdadmin.admin.dispatch_service import DispatchService  # noqa: E402
from cdadmin.admin.user_service import UserService  # noqa: E402
from cdadmin.core.domain import Application, Organization, Task, TaskStep, User  # noqa: E402
from cdadmin.infra.invocation_gateway import InvocationGateway  # noqa: E402
from fakes import (  # noqa: E402
    FakeAppRepo,
    FakeGitProviderFactory,
    FakeOrgRepo,
    FakeTaskRepo,
    FakeTransport,
    FakeUserRepo,
)


@pytest.fixture
def owner_user():
    return User(
        id="u-owner",
        username="alice",
        email="alice@example.com",
        password="hashed",
        secrets={"private": "x"},
        third_part={"github": {"access_token": "ghp_owner_token", "owner": "alice-gh"}},
    )


@pytest.fixture
def member_user():
    return User(id="u-member", username="bob")


@pytest.fixture
def owner_org():
    return Organization(
        id="org-owner",
        name="acme",
        user_id="u-owner",
        role="owner",
        secrets={"K": "0", "X": "9"},
    )


@pytest.fixture
def member_org():
    return Organization(id="org-member", name="acme", user_id="u-member", role="member")


@pytest.fixture
def application():
    return Application(
        id="app1",
        owner_org_id="org-owner",
        provider="github",
        owner="acme-gh",
        repo_name="web",
        repo_url="https://github.com/acme-gh/web.git",
        environment={
            "prod": {"secrets": {"K": "1"}, "region": "cn-hangzhou"},
            "staging": {"secrets": {"K": "s"}},
        },
    )


@pytest.fixture
def running_task():
    return Task(
        id="task-orig",
        app_id="app1",
        status="running",
        steps=[
            TaskStep(run="checkout", step_count="1", status="success"),
            TaskStep(run="build", step_count="2", status="running"),
            TaskStep(run="deploy", step_count="3", status="pending"),
        ],
        trigger_payload={
            "taskId": "task-orig",
            "provider": "github",
            "cloneUrl": "https://github.com/acme-gh/web.git",
            "authorization": {
                "dispatchOrgId": "org-member",
                "appId": "app1",
                "owner": "acme-gh",
                "accessToken": "ghp_owner_token",
                "secrets": {"K": "stale"},
            },
            "ref": "refs/heads/main",
            "commit": "c0ffee",
            "message": "fix: thing",
            "environment": {"prod": {"secrets": {"K": "run-override"}, "replicas": 3}},
            "envName": "prod",
            "customInputs": {"debug": True},
        },
    )


@pytest.fixture
def repos(owner_user, member_user, owner_org, member_org, application, running_task):
    return {
        "tasks": FakeTaskRepo([running_task]),
        "apps": FakeAppRepo([application]),
        "orgs": FakeOrgRepo([owner_org, member_org]),
        "users": FakeUserRepo([owner_user, member_user]),
    }


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def git_factory():
    return FakeGitProviderFactory()


@pytest.fixture
def user_service(repos):
    return UserService(repos["users"], repos["orgs"])


@pytest.fixture
def dispatch_service(repos, user_service, transport, git_factory):
    return DispatchService(
        tasks=repos["tasks"],
        apps=repos["apps"],
        orgs=repos["orgs"],
        users=user_service,
        gateway=InvocationGateway(transport, service_name="cd-svc", function_name="engine"),
        git_provider_factory=git_factory,
    )
