"""Team API client built on the guarded request executor."""

import asyncio
import json
import logging
import re
from typing import Any, Literal
from urllib.parse import quote

import httpx

from egress_guard.errors import EgressError, ErrorKind
from egress_guard.models import EndpointRequest, TenantContext
from egress_guard.security.auth import BearerTokenProvider, get_bearer_token
from egress_guard.utils.http import GuardedRequestExecutor

logger = logging.getLogger(__name__)

InviteRole = Literal["OWNER", "MEMBER"]
ChannelType = Literal["slack", "telegram"]

_PATH_ID = re.compile(r"^[A-Za-z0-9_-]+$")
_TEAM_ID = re.compile(r"^[A-Za-z0-9_-]{1,128}$")
_TEAM_ID_OR_SLUG = re.compile(r"^[A-Za-z0-9._-]{1,128}$")
_SLUG = re.compile(r"^[A-Za-z0-9._-]+$")


def validate_path_id(value: str, field_name: str) -> str:
    """Allow only URL-safe identifier characters in a path segment."""
    if not _PATH_ID.fullmatch(value):
        raise ValueError(f"Invalid {field_name}")
    return value


def is_valid_team_id(team_id: str) -> bool:
    return bool(_TEAM_ID.fullmatch(team_id))


def is_valid_team_id_or_slug(value: str) -> bool:
    return bool(_TEAM_ID_OR_SLUG.fullmatch(value))


def sanitize_slug(value: str, name: str) -> str:
    """Check slug characters and percent-encode the result."""
    if not _SLUG.fullmatch(value):
        raise ValueError(f"Invalid {name} value")
    return quote(value, safe="")


def error_message_from_body(body: str | None, default: str) -> str:
    """Pull ``error.message`` out of an error body, or fall back to default."""
    if not body:
        return default
    try:
        message = json.loads(body)["error"]["message"]
    except (ValueError, KeyError, TypeError):
        return default
    return message if isinstance(message, str) and message else default


class TeamsClient:
    """Client for team, project and invite endpoints."""

    def __init__(
        self,
        executor: GuardedRequestExecutor,
        tenant: TenantContext,
        auth: BearerTokenProvider,
    ):
        self.executor = executor
        self.tenant = tenant
        self.auth = auth

    async def _call(
        self,
        endpoint: str,
        method: str = "GET",
        body: dict[str, Any] | None = None,
    ) -> httpx.Response:
        request = EndpointRequest(endpoint=endpoint, method=method, body=body)
        return await self.executor.execute(request, self.tenant, self.auth)

    async def _get_result(self, endpoint: str) -> Any:
        """GET an endpoint and return the ``result`` field of its JSON body."""
        response = await self._call(endpoint)
        data = response.json()
        return data.get("result") if isinstance(data, dict) else None

    async def get_projects(self, team_slug: str) -> list[dict[str, Any]]:
        """
        List the projects of a team.

        Returns:
            Project dicts, or an empty list if the call fails.
        """
        safe_team_slug = sanitize_slug(team_slug, "teamSlug")
        try:
            result = await self._get_result(f"/v1/teams/{safe_team_slug}/projects")
        except EgressError as e:
            logger.info(f"Listing projects failed: {e.kind.value}")
            return []
        except ValueError:
            logger.info("Listing projects returned invalid JSON")
            return []
        return result or []

    async def get_project(self, team_slug: str, project_slug: str) -> dict[str, Any] | None:
        """Get a single project, or None if the call fails."""
        safe_team_slug = sanitize_slug(team_slug, "teamSlug")
        safe_project_slug = sanitize_slug(project_slug, "projectSlug")
        try:
            return await self._get_result(f"/v1/teams/{safe_team_slug}/projects/{safe_project_slug}")
        except EgressError as e:
            logger.info(f"Fetching project failed: {e.kind.value}")
            return None
        except ValueError:
            logger.info("Fetching project returned invalid JSON")
            return None

    async def _send_invite(self, team_id: str, email: str, role: InviteRole) -> None:
        await self._call(
            f"/v1/teams/{team_id}/invites",
            method="POST",
            body={"inviteEmail": email, "inviteRole": role},
        )

    async def send_team_invites(
        self,
        team_id: str,
        invites: list[dict[str, str]],
    ) -> dict[str, Any]:
        """
        Send invites concurrently, best-effort.

        Each invite is reported independently; one failure does not
        abort the others.

        Args:
            team_id: Team identifier.
            invites: Dicts with ``email`` and ``role`` (OWNER or MEMBER).

        Returns:
            ``{"ok": True, "results": [...], "invites": [...]}`` with one
            status per invite ("fulfilled" or "rejected"), or
            ``{"ok": False, "error_message": ...}``.
        """
        if await get_bearer_token(self.auth) is None:
            return {"ok": False, "error_message": "You are not authorized to perform this action"}

        if not is_valid_team_id(team_id):
            return {"ok": False, "error_message": "Invalid team identifier"}

        outcomes = await asyncio.gather(
            *(self._send_invite(team_id, invite["email"], invite["role"]) for invite in invites),
            return_exceptions=True,
        )

        results = []
        details = []
        for invite, outcome in zip(invites, outcomes):
            if outcome is None:
                results.append("fulfilled")
                details.append({"email": invite["email"], "ok": True})
                continue
            if not isinstance(outcome, Exception):
                raise outcome
            if isinstance(outcome, EgressError):
                logger.info(f"Invite failed: {outcome.kind.value} (status {outcome.status_code})")
                message = error_message_from_body(outcome.body, outcome.user_message)
            else:
                logger.warning(f"Invite failed unexpectedly: {type(outcome).__name__}")
                message = "Failed to send invite"
            results.append("rejected")
            details.append({"email": invite["email"], "ok": False, "error_message": message})
        return {"ok": True, "results": results, "invites": details}

    async def accept_invite(self, team_id: str, invite_id: str) -> dict[str, Any]:
        """Accept a team invite."""
        try:
            team_id = validate_path_id(team_id, "teamId")
            invite_id = validate_path_id(invite_id, "inviteId")
        except ValueError:
            return {"ok": False, "error_message": "Invalid invite parameters"}

        try:
            await self._call(
                f"/v1/teams/{team_id}/invites/{invite_id}/accept",
                method="POST",
                body={},
            )
        except EgressError as e:
            if e.kind is ErrorKind.UNAUTHENTICATED:
                return {"ok": False, "error_message": "You are not authorized to perform this action"}
            return {
                "ok": False,
                "error_message": error_message_from_body(e.body, "Failed to accept invite"),
            }
        return {"ok": True}

    async def create_dedicated_support_channel(
        self,
        team_id_or_slug: str,
        channel_type: ChannelType,
    ) -> dict[str, str | None]:
        """Create a dedicated support channel. Returns ``{"error": None}`` on success."""
        if not is_valid_team_id_or_slug(team_id_or_slug):
            return {"error": "Invalid team identifier."}

        safe_team_id_or_slug = quote(team_id_or_slug, safe="")
        try:
            await self._call(
                f"/v1/teams/{safe_team_id_or_slug}/dedicated-support-channel",
                method="POST",
                body={"type": channel_type},
            )
        except EgressError as e:
            if e.kind is ErrorKind.UNAUTHENTICATED:
                return {"error": "Unauthorized"}
            return {
                "error": error_message_from_body(e.body, "Failed to create dedicated support channel."),
            }
        return {"error": None}
