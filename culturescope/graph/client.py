"""
Microsoft Graph API client for organizational communications.

Collects mail and Teams chat messages across the directory and normalizes
them into UnifiedCommunication records:
- App-only token management (see culturescope.graph.auth)
- Structured logging on every API call
- Pagination via @odata.nextLink with a per-resource page limit
- Async httpx client so a running analysis can be cancelled mid-request

Usage:
    from culturescope.graph.client import GraphClient

    graph = GraphClient(token_provider=provider)
    comms = await graph.fetch_communications(date_from, date_to, departments=["Sales"])
    await graph.aclose()
"""

import asyncio
import logging
import re
import time
from datetime import datetime, timezone
from typing import Optional, Protocol

import httpx

from culturescope.analysis.schemas import (
    ChatType,
    CommunicationSource,
    UnifiedCommunication,
    UserMetadata,
)
from culturescope.config import settings
from culturescope.graph.auth import GraphAuthError
from culturescope.logging.audit import audit

logger = logging.getLogger(__name__)

USER_SELECT_FIELDS = "id,mail,department,country,displayName"

MAIL_SELECT_FIELDS = "id,subject,sender,toRecipients,ccRecipients,body,sentDateTime"

CHAT_SELECT_FIELDS = "id,chatType"

MAIL_PAGE_SIZE = 100
CHAT_PAGE_SIZE = 50


class TokenProvider(Protocol):
    def get_token(self) -> str: ...


class GraphError(Exception):
    """Raised when communications or users cannot be fetched from Graph."""
    pass


class GraphClient:
    """
    Microsoft Graph API client for directory-wide communication reads.

    Per-user and per-chat failures are logged and skipped so one locked
    mailbox does not sink a whole analysis. Failing to list users, or to
    authenticate at all, raises GraphError.
    """

    def __init__(
        self,
        token_provider: TokenProvider,
        base_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        max_pages: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._tokens = token_provider
        self._base = (base_url or settings.graph_base_url).rstrip("/")
        self._max_pages = max_pages or settings.graph_max_pages
        self._http = httpx.AsyncClient(
            timeout=timeout_seconds or settings.graph_timeout_seconds,
            headers={"Content-Type": "application/json"},
            transport=transport,
        )

    async def aclose(self) -> None:
        """Close the HTTP client. Call when done."""
        await self._http.aclose()

    # =========================================================================
    # LOW-LEVEL REQUESTS
    # =========================================================================

    async def _get(self, url: str, params: Optional[dict] = None) -> dict:
        try:
            token = await asyncio.to_thread(self._tokens.get_token)
        except GraphAuthError as e:
            raise GraphError(str(e)) from e

        resp = await self._http.get(
            url, params=params, headers={"Authorization": f"Bearer {token}"}
        )
        resp.raise_for_status()
        return resp.json()

    async def _get_paged(
        self, url: str, params: Optional[dict] = None, max_pages: Optional[int] = None
    ) -> list[dict]:
        """Follow @odata.nextLink until exhausted or the page limit is hit."""
        limit = max_pages or self._max_pages
        items: list[dict] = []
        next_url: Optional[str] = url
        pages = 0

        while next_url and pages < limit:
            # nextLink already carries the query string
            data = await self._get(next_url, params=params if pages == 0 else None)
            items.extend(data.get("value", []))
            next_url = data.get("@odata.nextLink")
            pages += 1

        if next_url:
            logger.warning(
                "graph.pagination.limit_reached",
                extra={"action": "graph.pagination.limit_reached", "pages": pages, "items": len(items)},
            )
        return items

    # =========================================================================
    # CONNECTION + DIRECTORY
    # =========================================================================

    async def test_connection(self) -> bool:
        """Read one user to verify credentials and User.Read.All."""
        try:
            await self._get(f"{self._base}/users", params={"$select": "id", "$top": 1})
            return True
        except (httpx.HTTPError, GraphError) as e:
            logger.warning(
                "graph.test_connection.failed",
                extra={"action": "graph.test_connection.failed", "error": str(e)},
            )
            return False

    async def list_users(self) -> list[dict]:
        """All directory users with department and country."""
        try:
            return await self._get_paged(
                f"{self._base}/users", params={"$select": USER_SELECT_FIELDS, "$top": 999}
            )
        except httpx.HTTPError as e:
            logger.error(
                "graph.list_users.error",
                extra={"action": "graph.list_users.error", "error": str(e)},
            )
            raise GraphError(f"Microsoft Graph API error: {e}") from e

    async def get_users_metadata(
        self,
        extra_departments: Optional[list[str]] = None,
        extra_countries: Optional[list[str]] = None,
        excluded_countries: Optional[list[str]] = None,
    ) -> UserMetadata:
        """
        Distinct department and country names across the directory.

        Names are canonicalized (trimmed, title-cased) so "sales" and
        "SALES " collapse to "Sales". Extra names are always offered;
        excluded countries are never offered.
        """
        users = await self.list_users()
        excluded = {self.normalize_name(c) for c in (excluded_countries or [])}

        departments = {self.normalize_name(d) for d in (extra_departments or []) if d.strip()}
        countries = {self.normalize_name(c) for c in (extra_countries or []) if c.strip()}

        for user in users:
            if user.get("department"):
                departments.add(self.normalize_name(user["department"]))
            if user.get("country"):
                countries.add(self.normalize_name(user["country"]))

        countries -= excluded
        return UserMetadata(departments=sorted(departments), countries=sorted(countries))

    # =========================================================================
    # COMMUNICATIONS
    # =========================================================================

    async def fetch_communications(
        self,
        date_from: datetime,
        date_to: datetime,
        departments: Optional[list[str]] = None,
        countries: Optional[list[str]] = None,
    ) -> list[UnifiedCommunication]:
        """
        Fetch every mail and chat message sent in [date_from, date_to] by the
        users matching the department/country filters.

        Returns mail first, then chat, each in fetch order. A message seen
        twice (a group chat read through two members) is kept once.

        Raises:
            GraphError: If the user directory cannot be read.
        """
        start = time.monotonic()
        users = self.filter_users(await self.list_users(), departments, countries)

        mail: list[UnifiedCommunication] = []
        chat: list[UnifiedCommunication] = []

        for user in users:
            user_mail, user_chat = await asyncio.gather(
                self.fetch_user_mail(user["id"], date_from, date_to),
                self.fetch_user_chat_messages(user["id"], date_from, date_to),
            )
            mail.extend(user_mail)
            chat.extend(user_chat)

        communications: list[UnifiedCommunication] = []
        seen: set[str] = set()
        for comm in mail + chat:
            if comm.id in seen:
                continue
            seen.add(comm.id)
            communications.append(comm)

        latency_ms = int((time.monotonic() - start) * 1000)
        audit.info(
            "graph.communications.fetched",
            users=len(users),
            mail=len(mail),
            chat=len(chat),
            total=len(communications),
            departments=departments or [],
            countries=countries or [],
            latency_ms=latency_ms,
        )
        return communications

    async def fetch_user_mail(
        self, user_id: str, date_from: datetime, date_to: datetime
    ) -> list[UnifiedCommunication]:
        """A user's mail sent in the date range. Errors yield an empty list."""
        params = {
            "$filter": (
                f"sentDateTime ge {_graph_datetime(date_from)} "
                f"and sentDateTime le {_graph_datetime(date_to)}"
            ),
            "$select": MAIL_SELECT_FIELDS,
            "$top": MAIL_PAGE_SIZE,
        }
        try:
            raw = await self._get_paged(f"{self._base}/users/{user_id}/messages", params=params)
        except httpx.HTTPError as e:
            logger.error(
                "graph.fetch_mail.error",
                extra={"action": "graph.fetch_mail.error", "user_id": user_id, "error": str(e)},
            )
            return []

        parsed = (self.parse_mail_message(m) for m in raw)
        return [c for c in parsed if c is not None]

    async def fetch_user_chat_messages(
        self, user_id: str, date_from: datetime, date_to: datetime
    ) -> list[UnifiedCommunication]:
        """A user's Teams chat messages created in the date range."""
        try:
            chats = await self._get_paged(
                f"{self._base}/users/{user_id}/chats", params={"$select": CHAT_SELECT_FIELDS}
            )
        except httpx.HTTPError as e:
            logger.error(
                "graph.fetch_chats.error",
                extra={"action": "graph.fetch_chats.error", "user_id": user_id, "error": str(e)},
            )
            return []

        params = {
            "$filter": (
                f"createdDateTime ge {_graph_datetime(date_from)} "
                f"and createdDateTime le {_graph_datetime(date_to)}"
            ),
            "$orderby": "createdDateTime desc",
            "$top": CHAT_PAGE_SIZE,
        }
        messages: list[UnifiedCommunication] = []
        for chat in chats:
            chat_id = chat.get("id")
            if not chat_id:
                continue
            try:
                raw = await self._get_paged(
                    f"{self._base}/users/{user_id}/chats/{chat_id}/messages", params=params
                )
            except httpx.HTTPError as e:
                logger.error(
                    "graph.fetch_chat_messages.error",
                    extra={"action": "graph.fetch_chat_messages.error", "chat_id": chat_id, "error": str(e)},
                )
                continue

            for msg in raw:
                comm = self.parse_chat_message(msg, chat.get("chatType"))
                if comm is not None:
                    messages.append(comm)

        return messages

    # =========================================================================
    # PARSING + FILTERING
    # =========================================================================

    @staticmethod
    def normalize_name(name: str) -> str:
        """Trim and title-case a department or country name."""
        return " ".join(word.capitalize() for word in name.strip().lower().split())

    @classmethod
    def filter_users(
        cls,
        users: list[dict],
        departments: Optional[list[str]] = None,
        countries: Optional[list[str]] = None,
    ) -> list[dict]:
        """Keep users whose department and country match (case-insensitively)."""
        result = [u for u in users if u.get("id")]
        if departments:
            wanted = {cls.normalize_name(d) for d in departments}
            result = [
                u for u in result
                if u.get("department") and cls.normalize_name(u["department"]) in wanted
            ]
        if countries:
            wanted = {cls.normalize_name(c) for c in countries}
            result = [
                u for u in result
                if u.get("country") and cls.normalize_name(u["country"]) in wanted
            ]
        return result

    @staticmethod
    def parse_mail_message(msg: dict) -> Optional[UnifiedCommunication]:
        """
        Parse a raw Graph mail message into a UnifiedCommunication.

        Returns None (and logs) for a message that cannot be parsed, so one
        malformed message does not break the whole fetch.
        """
        try:
            sender = (msg.get("sender") or {}).get("emailAddress") or {}
            recipients = [
                (r.get("emailAddress") or {}).get("address")
                for r in (msg.get("toRecipients") or []) + (msg.get("ccRecipients") or [])
            ]
            body = msg.get("body") or {}

            return UnifiedCommunication(
                id=_require_id(msg),
                source=CommunicationSource.MAIL,
                subject=msg.get("subject"),
                sender=str(sender.get("address") or ""),
                sender_name=sender.get("name"),
                recipients=[r for r in recipients if r],
                content=str(body.get("content") or ""),
                sent_at=_parse_graph_datetime(msg.get("sentDateTime")),
            )
        except (KeyError, TypeError, AttributeError, ValueError) as e:
            logger.error(
                "graph.parse_mail.failed",
                extra={"action": "graph.parse_mail.failed", "error": str(e), "msg_id": _safe_id(msg)},
            )
            return None

    @staticmethod
    def parse_chat_message(msg: dict, chat_type: Optional[str] = None) -> Optional[UnifiedCommunication]:
        """
        Parse a raw Teams chat message. System events (members added, call
        ended, ...) are not conversation content and return None.
        """
        if msg.get("messageType", "message") != "message":
            return None
        try:
            user = (msg.get("from") or {}).get("user") or {}
            body = msg.get("body") or {}

            if msg.get("channelIdentity"):
                kind = ChatType.CHANNEL
            elif chat_type == "meeting":
                kind = ChatType.MEETING
            else:
                kind = ChatType.DIRECT

            return UnifiedCommunication(
                id=_require_id(msg),
                source=CommunicationSource.CHAT,
                chat_type=kind,
                sender=str(user.get("id") or ""),
                sender_name=user.get("displayName"),
                recipients=[],
                content=str(body.get("content") or ""),
                sent_at=_parse_graph_datetime(msg.get("createdDateTime")),
            )
        except (KeyError, TypeError, AttributeError, ValueError) as e:
            logger.error(
                "graph.parse_chat.failed",
                extra={"action": "graph.parse_chat.failed", "error": str(e), "msg_id": _safe_id(msg)},
            )
            return None


# =============================================================================
# PRIVATE HELPERS
# =============================================================================

_FRACTION = re.compile(r"\.(\d+)")


def _graph_datetime(value: datetime) -> str:
    """Format a datetime for an OData $filter (UTC, second precision)."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


def _parse_graph_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse Graph timestamps like 2024-01-05T10:00:00.1234567Z."""
    if not value:
        return None
    text = value.replace("Z", "+00:00")
    # Graph can send 7 fractional digits; fromisoformat wants at most 6
    text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _safe_id(msg: object) -> str:
    return str(msg.get("id", "unknown")) if isinstance(msg, dict) else "unknown"


def _require_id(msg: dict) -> str:
    msg_id = msg.get("id")
    if not msg_id:
        raise ValueError("message has no id")
    return str(msg_id)
