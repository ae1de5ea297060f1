# cdadmin/admin/user_service.py
"""
User / org account service.

Resolves org owners and their git provider credentials (used by the
dispatch service), and produces desensitized views for the API:
``third_part``, ``password`` and ``secrets`` never leave this module.
"""
from __future__ import annotations

from cdadmin.admin.errors import NeedLoginError, NoPermissionError, NotFoundError, ValidationError
from cdadmin.admin.models import BindTokenRequest, OrgView, UserView
from cdadmin.config import settings
from cdadmin.core.domain import Organization, User
from cdadmin.core.ports import OrgRepository, UserRepository
from cdadmin.infra.audit_log import audit_event
from cdadmin.infra.logging_config import get_logger

logger = get_logger(__name__)


def desensitize_user(user: User) -> UserView:
    return UserView(
        id=user.id,
        username=user.username,
        email=user.email,
        is_auth=bool(user.provider_token("github")),
        github_name=user.provider_owner("github"),
    )


def desensitize_orgs(orgs: list[Organization]) -> list[OrgView]:
    return [
        OrgView(
            id=org.id,
            name=org.name,
            role=org.role,
            user_id=org.user_id,
            description=org.description,
        )
        for org in orgs
    ]


class UserService:
    """
    Org-owner resolution and user account operations.

    Stateless apart from its repositories: safe to share.
    """

    def __init__(self, users: UserRepository, orgs: OrgRepository) -> None:
        self.users = users
        self.orgs = orgs

    async def get_user_by_id(self, user_id: str) -> User | None:
        if not user_id:
            return None
        return await self.users.get_user_by_id(user_id)

    async def get_owner_user_by_org_id(self, org_id: str) -> User | None:
        """
        Owner of the org that ``org_id`` belongs to.

        ``org_id`` is a membership record; when the caller is not the owner
        the owner record is looked up by org name (one owner per org).
        """
        org = await self.orgs.get_org_by_id(org_id)
        if org is None:
            raise NotFoundError(f"Org '{org_id}' not found")

        if org.is_owner:
            owner_user_id = org.user_id
        else:
            owner_org = await self.orgs.get_owner_org_by_name(org.name)
            if owner_org is None:
                raise NotFoundError(f"Owner of org '{org.name}' not found")
            owner_user_id = owner_org.user_id

        return await self.get_user_by_id(owner_user_id)

    async def get_owner_user_by_org_name(self, org_name: str) -> User | None:
        owner_org = await self.orgs.get_owner_org_by_name(org_name)
        if owner_org is None:
            return None
        return await self.get_user_by_id(owner_org.user_id)

    async def get_provider_token(self, org_id: str, user_id: str, provider: str) -> str:
        """
        Org owner's access token for ``provider``.

        A missing token is the caller's to fix when they are the owner
        (``ValidationError``), otherwise a permission problem.

        No admin route exposes this directly; it is the lookup for callers
        that act on a repository with the owner's credentials outside a
        dispatch (dispatch resolves the owner by org name).
        """
        owner = await self.get_owner_user_by_org_id(org_id)
        token = owner.provider_token(provider) if owner else ""
        if not token:
            if owner is not None and owner.id == user_id:
                raise ValidationError(f"{provider} access token does not exist, please authorize again")
            raise NoPermissionError(f"{provider}.access_token not found")
        return token

    async def user_info(self, user_id: str) -> UserView:
        user = await self.get_user_by_id(user_id)
        if user is None:
            raise NeedLoginError("User information is invalid")

        view = desensitize_user(user)
        view.list_orgs = await self.list_orgs(user_id)
        return view

    async def list_orgs(self, user_id: str) -> list[OrgView]:
        return desensitize_orgs(await self.orgs.list_by_user_id(user_id))

    async def bind_provider_token(self, user_id: str, org_id: str, req: BindTokenRequest) -> None:
        """Store ``req.token`` under ``third_part[provider]``; owner roles only."""
        org = await self.orgs.get_org_by_id(org_id)
        if org is None or org.user_id != user_id or org.role not in settings.owner_role_keys:
            raise NoPermissionError("Only org owners can bind provider tokens")

        user = await self.get_user_by_id(user_id)
        if user is None:
            raise NeedLoginError("User information is invalid")

        third_part = {k: dict(v) for k, v in user.third_part.items()}
        third_part.setdefault(req.provider, {})["access_token"] = req.token
        await self.users.update_user_by_id(user_id, {"third_part": third_part})

        audit_event("user.token.bind", org_id=org_id, detail=f"user={user_id} provider={req.provider}")


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_svc: UserService | None = None


def get_user_service() -> UserService:
    """Get the global UserService singleton (Postgres repositories)."""
    global _svc
    if _svc is None:
        from cdadmin.infra.pg_repos_async import AsyncPostgresOrgRepository, AsyncPostgresUserRepository

        _svc = UserService(AsyncPostgresUserRepository(), AsyncPostgresOrgRepository())
    return _svc


def reset_user_service() -> None:
    """Reset the singleton (for testing)."""
    global _svc
    _svc = None
