"""Async client for the Teams native chat service.

Teams chat runs on Skype-era endpoints rather than Microsoft Graph:
1. POST the MSAL skype access token to the authz endpoint to get a
   session skypeToken and the region's chat service URL.
2. Call the chat service with "Authentication: skypetoken=<token>".

Non-2xx responses and transport failures raise RemoteApiError, so the
client is usable from the CLI, the daemon and tests alike.
"""

import base64
import binascii
import json
import logging
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.parse import quote

import httpx

from tmz.errors import RemoteApiError
from tmz.services.cache_store import CacheStore
from tmz.services.credentials import CredentialManager
from tmz.utils.redaction import redact_headers

logger = logging.getLogger(__name__)

AUTHZ_URL = "https://teams.microsoft.com/api/authsvc/v1.0/authz"
ASM_BASE_URL = "https://api.asm.skype.com/v1/objects"
GRAPH_URL = "https://graph.microsoft.com/v1.0"
CONVERSATION_PAGE_SIZE = 500
REQUEST_TIMEOUT = 60.0

IMAGE_EXTENSIONS = frozenset({"jpg", "jpeg", "png", "gif", "bmp", "webp"})


@dataclass
class ChatSession:
    """Result of the authz exchange."""

    skype_token: str
    skype_id: str
    chat_service_url: str
    expires_at: int


def _skype_token_claims(token: str) -> dict:
    parts = token.split(".")
    if len(parts) < 2:
        return {}
    padded = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(padded))
    except (binascii.Error, ValueError):
        return {}
    return claims if isinstance(claims, dict) else {}


def guess_content_type(path: Path) -> str:
    content_type, _ = mimetypes.guess_type(path.name)
    return content_type or "application/octet-stream"


def build_file_message(
    object_id: str, file_name: str, file_size: int, is_image: bool
) -> tuple[str, str]:
    """Message type and URIObject body referencing an uploaded object."""
    object_url = f"{ASM_BASE_URL}/{object_id}"
    if is_image:
        view_link = f"https://api.asm.skype.com/s/i?{object_id}"
        content = (
            f'<URIObject type="Picture.1" uri="{object_url}" '
            f'url_thumbnail="{object_url}/views/imgt1">'
            f'<a href="{view_link}">{view_link}</a>'
            f'<meta type="photo" originalName="{file_name}"/></URIObject>'
        )
        return "RichText/UriObject", content
    view_link = f"https://login.skype.com/login/sso?go=webclient.xmm&docid={object_id}"
    content = (
        f'<URIObject type="File.1" uri="{object_url}" '
        f'url_thumbnail="{object_url}/views/thumbnail">'
        f'<FileSize v="{file_size}"/><OriginalName v="{file_name}"/>'
        f'<a href="{view_link}">{view_link}</a></URIObject>'
    )
    return "RichText/Media_GenericFile", content


class ChatClient:
    """Chat service client authenticated through the credential manager."""

    def __init__(
        self,
        credentials: CredentialManager,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._credentials = credentials
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._session: ChatSession | None = None

    async def __aenter__(self) -> "ChatClient":
        self._client = httpx.AsyncClient(
            timeout=REQUEST_TIMEOUT,
            transport=self._transport,
            follow_redirects=True,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, url: str, action: str, **kwargs: Any) -> httpx.Response:
        if self._client is None:
            raise RuntimeError("ChatClient must be used as an async context manager")
        logger.debug("%s %s headers=%s", method, url, redact_headers(kwargs.get("headers")))
        try:
            resp = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise RemoteApiError(f"{action} request failed: {e}") from e
        if resp.status_code >= 400:
            raise RemoteApiError(
                f"{action} failed: {resp.status_code} {resp.text[:200]}",
                status_code=resp.status_code,
            )
        return resp

    @staticmethod
    def _json(resp: httpx.Response, action: str) -> Any:
        try:
            return resp.json()
        except ValueError as e:
            raise RemoteApiError(f"{action} returned invalid JSON: {e}") from e

    async def get_session(self) -> ChatSession:
        """Exchange the stored skype access token for a chat session.

        The session is cached for the lifetime of this client.
        """
        if self._session is not None:
            return self._session

        bundle = await self._credentials.get_valid_or_refresh()
        resp = await self._request(
            "POST",
            AUTHZ_URL,
            "authz",
            headers={"Authorization": f"Bearer {bundle.skype_token}"},
        )
        settings = self._json(resp, "authz")
        skype_token = (settings.get("tokens") or {}).get("skypeToken")
        chat_service_url = (settings.get("regionGtms") or {}).get("chatService")
        if not skype_token:
            raise RemoteApiError("authz response has no skypeToken")
        if not chat_service_url:
            raise RemoteApiError("authz response has no chatService URL")

        claims = _skype_token_claims(skype_token)
        self._session = ChatSession(
            skype_token=skype_token,
            skype_id=str(claims.get("skypeid", "unknown")),
            chat_service_url=chat_service_url.rstrip("/"),
            expires_at=int(claims.get("exp", 0) or 0),
        )
        return self._session

    def _conversation_url(self, session: ChatSession, conversation_id: str) -> str:
        return (
            f"{session.chat_service_url}/v1/users/ME/conversations/"
            f"{quote(conversation_id, safe='')}"
        )

    @staticmethod
    def _auth_header(session: ChatSession) -> dict[str, str]:
        return {"Authentication": f"skypetoken={session.skype_token}"}

    async def list_conversations(self) -> list[dict]:
        """All conversations (chats, channels, meetings) for the signed-in user."""
        session = await self.get_session()
        resp = await self._request(
            "GET",
            f"{session.chat_service_url}/v1/users/ME/conversations",
            "list conversations",
            params={"view": "msnp24Equivalent", "pageSize": CONVERSATION_PAGE_SIZE},
            headers=self._auth_header(session),
        )
        data = self._json(resp, "list conversations")
        conversations = data.get("conversations") if isinstance(data, dict) else None
        return [c for c in conversations or [] if isinstance(c, dict)]

    async def get_messages(self, conversation_id: str, page_size: int = 200) -> list[dict]:
        """Most recent messages of a conversation, as returned (newest first).

        Each payload gets an isFromMe flag derived from its sender.
        """
        session = await self.get_session()
        resp = await self._request(
            "GET",
            f"{self._conversation_url(session, conversation_id)}/messages",
            "get messages",
            params={"startTime": 0, "view": "msnp24Equivalent", "pageSize": page_size},
            headers=self._auth_header(session),
        )
        data = self._json(resp, "get messages")
        messages = data.get("messages") if isinstance(data, dict) else None
        result = []
        for message in messages or []:
            if not isinstance(message, dict):
                continue
            sender = message.get("from")
            message["isFromMe"] = isinstance(sender, str) and sender.endswith(session.skype_id)
            result.append(message)
        return result

    async def get_channel_messages(self, team_id: str, channel_id: str, page_size: int = 200) -> list[dict]:
        """Messages of a team channel.

        Channels are chat service conversations keyed by their thread id,
        so the team id only scopes the call for the caller.
        """
        logger.debug("Reading channel %s of team %s", channel_id, team_id)
        return await self.get_messages(channel_id, page_size=page_size)

    # --- Microsoft Graph (teams and channels) ---

    async def _graph_list(self, path: str, action: str) -> list[dict]:
        bundle = await self._credentials.get_valid_or_refresh()
        resp = await self._request(
            "GET",
            f"{GRAPH_URL}{path}",
            action,
            headers={"Authorization": f"Bearer {bundle.graph_token}"},
        )
        data = self._json(resp, action)
        items = data.get("value") if isinstance(data, dict) else None
        return [item for item in items or [] if isinstance(item, dict)]

    async def list_teams(self) -> list[dict]:
        """Teams the signed-in user has joined, from Graph."""
        return await self._graph_list("/me/joinedTeams", "list teams")

    async def list_channels(self, team_id: str) -> list[dict]:
        """Channels of one team, from Graph."""
        return await self._graph_list(f"/teams/{quote(team_id, safe='')}/channels", "list channels")

    async def send_message(self, conversation_id: str, content: str) -> dict:
        """Post an HTML message. Sends are fire-and-report, never retried."""
        return await self._send_raw(conversation_id, "RichText/Html", content)

    async def _send_raw(self, conversation_id: str, message_type: str, content: str) -> dict:
        session = await self.get_session()
        resp = await self._request(
            "POST",
            f"{self._conversation_url(session, conversation_id)}/messages",
            "send message",
            json={"messagetype": message_type, "content": content},
            headers=self._auth_header(session),
        )
        data = self._json(resp, "send message") if resp.content else {}
        return data if isinstance(data, dict) else {}

    async def send_file(self, conversation_id: str, path: Path) -> dict:
        """Upload a file to the object store and post a message linking it.

        Raises:
            RemoteApiError: If the upload or the message post fails.
            OSError: If the file cannot be read.
        """
        data = path.read_bytes()
        extension = path.suffix.lstrip(".").lower()
        is_image = extension in IMAGE_EXTENSIONS
        object_id = await self._upload_object(conversation_id, path.name, data, path, is_image)
        message_type, content = build_file_message(object_id, path.name, len(data), is_image)
        logger.info("Uploaded %s (%d bytes) as %s", path.name, len(data), object_id)
        return await self._send_raw(conversation_id, message_type, content)

    async def _upload_object(
        self, conversation_id: str, file_name: str, data: bytes, path: Path, is_image: bool
    ) -> str:
        session = await self.get_session()
        headers = {
            "Authorization": f"skype_token {session.skype_token}",
            "X-Client-Version": "0/0.0.0.0",
        }
        meta: dict[str, Any] = {
            "type": "pish/image" if is_image else "sharing/file",
            "permissions": {conversation_id: ["read"]},
        }
        if not is_image:
            meta["filename"] = file_name

        resp = await self._request("POST", ASM_BASE_URL, "create upload object", json=meta, headers=headers)
        object_id = self._json(resp, "create upload object").get("id")
        if not object_id:
            raise RemoteApiError("upload object response has no id")

        content_path = "imgpsh" if is_image else "original"
        await self._request(
            "PUT",
            f"{ASM_BASE_URL}/{object_id}/content/{content_path}",
            "upload content",
            content=data,
            headers={**headers, "Content-Type": guess_content_type(path)},
        )
        return object_id

    async def fetch_asset(self, url: str, cache: CacheStore) -> tuple[bytes, str]:
        """Download an image or file, reading through the asset cache.

        Returns:
            (data, content_type)
        """
        cached = cache.get_asset(url)
        if cached is not None:
            return cached

        session = await self.get_session()
        resp = await self._request(
            "GET",
            url,
            "download asset",
            headers={"Authorization": f"skype_token {session.skype_token}"},
        )
        content_type = resp.headers.get("content-type", "image/png").split(";")[0].strip()
        cache.cache_asset(url, resp.content, content_type)
        return resp.content, content_type
