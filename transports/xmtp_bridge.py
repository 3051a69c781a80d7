"""HTTP client for the local XMTP bridge process.

The bridge hosts the XMTP SDK (identity, conversations, key packages) and
exposes it as JSON over HTTP; the message stream is newline-delimited JSON.
"""

import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

import aiohttp

from core.models import (
    GroupMember,
    InboundMessage,
    InboxState,
    InstallationStatus,
    StatusMap,
)

log = logging.getLogger(__name__)

DEFAULT_BRIDGE_URL = "http://127.0.0.1:5555"


class BridgeError(Exception):
    def __init__(self, message: str, *, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class BridgeConversation:
    def __init__(self, client: "XmtpBridgeClient", conversation_id: str):
        self.client = client
        self.id = conversation_id

    async def send(self, text: str) -> None:
        await self.client._request(
            "POST", f"/v1/conversations/{self.id}/messages", payload={"content": text}
        )

    async def members(self) -> List[GroupMember]:
        rows = await self.client._request("GET", f"/v1/conversations/{self.id}/members")
        return [GroupMember(inbox_id=str(row.get("inbox_id") or "")) for row in rows or []]


class XmtpBridgeClient:
    def __init__(
        self,
        base_url: str = DEFAULT_BRIDGE_URL,
        *,
        env: str = "dev",
        session: Optional[aiohttp.ClientSession] = None,
        request_timeout: Optional[float] = 30.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.env = env
        self.request_timeout = request_timeout
        self._session = session
        self._owns_session = session is None
        self._session_token: Optional[str] = None
        self.inbox_id: str = ""
        self.sdk_version: str = "unknown"

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self.request_timeout)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    def _headers(self) -> Dict[str, str]:
        if not self._session_token:
            return {}
        return {"Authorization": f"Bearer {self._session_token}"}

    @staticmethod
    def _error_text(body: str, status: int) -> str:
        try:
            data = json.loads(body) if body else {}
        except ValueError:
            data = {}
        if isinstance(data, dict) and data.get("error"):
            return str(data["error"])
        return body.strip() or f"bridge request failed with HTTP {status}"

    async def _request(
        self,
        method: str,
        path: str,
        *,
        payload: Optional[dict] = None,
        params: Optional[Dict[str, str]] = None,
        allow_404: bool = False,
    ) -> Any:
        url = f"{self.base_url}{path}"
        try:
            async with self._get_session().request(
                method, url, json=payload, params=params, headers=self._headers()
            ) as resp:
                if allow_404 and resp.status == 404:
                    return None
                body = await resp.text()
                if resp.status >= 400:
                    raise BridgeError(self._error_text(body, resp.status), status=resp.status)
        except aiohttp.ClientError as exc:
            raise BridgeError(f"{method} {path} failed: {exc}") from exc
        if not body:
            return None
        try:
            return json.loads(body)
        except ValueError as exc:
            raise BridgeError(f"{method} {path} returned invalid JSON") from exc

    async def connect(self, signer, encryption_key: bytes) -> str:
        """Authenticate the agent identity with the bridge; returns the inbox id."""

        challenge = await self._request(
            "GET",
            "/v1/identity/challenge",
            params={"address": signer.identifier, "env": self.env},
        )
        if not isinstance(challenge, dict) or not challenge.get("message"):
            raise BridgeError("bridge returned no identity challenge")
        data = await self._request(
            "POST",
            "/v1/client",
            payload={
                "address": signer.identifier,
                "env": self.env,
                "signature": signer.sign_message(challenge["message"]),
                "db_encryption_key": encryption_key.hex(),
            },
        )
        if not isinstance(data, dict) or not data.get("inbox_id"):
            raise BridgeError("bridge did not return an inbox id")
        self._session_token = data.get("session_token")
        self.inbox_id = str(data["inbox_id"])
        self.sdk_version = str(data.get("sdk_version") or "unknown")
        return self.inbox_id

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    async def sync_conversations(self) -> None:
        await self._request("POST", "/v1/conversations/sync")

    async def stream_all_messages(self) -> AsyncIterator[InboundMessage]:
        url = f"{self.base_url}/v1/messages/stream"
        timeout = aiohttp.ClientTimeout(total=None, sock_read=None)
        async with self._get_session().get(url, headers=self._headers(), timeout=timeout) as resp:
            if resp.status >= 400:
                body = await resp.text()
                raise BridgeError(self._error_text(body, resp.status), status=resp.status)
            async for raw in resp.content:
                line = raw.strip()
                if not line:
                    continue
                try:
                    data = json.loads(line)
                except ValueError:
                    log.warning("Skipping malformed stream line: %r", line[:200])
                    continue
                if not isinstance(data, dict):
                    log.warning("Skipping non-object stream line: %r", line[:200])
                    continue
                yield InboundMessage.from_dict(data)

    async def get_conversation_by_id(self, conversation_id: str) -> Optional[BridgeConversation]:
        data = await self._request(
            "GET", f"/v1/conversations/{conversation_id}", allow_404=True
        )
        if data is None:
            return None
        return BridgeConversation(self, str(data.get("id") or conversation_id))

    async def get_inbox_id_by_identifier(
        self, identifier: str, kind: str = "ethereum"
    ) -> Optional[str]:
        data = await self._request(
            "GET", "/v1/inboxes/lookup", params={"identifier": identifier, "kind": kind}
        )
        if not isinstance(data, dict):
            return None
        return data.get("inbox_id") or None

    async def inbox_state_from_inbox_ids(
        self, inbox_ids: Sequence[str], refresh_from_network: bool = False
    ) -> List[InboxState]:
        rows = await self._request(
            "POST",
            "/v1/inboxes/state",
            payload={
                "inbox_ids": list(inbox_ids),
                "refresh_from_network": refresh_from_network,
            },
        )
        return [InboxState.from_dict(row) for row in rows or []]

    async def get_key_package_statuses_for_installation_ids(
        self, installation_ids: Sequence[str]
    ) -> StatusMap:
        data = await self._request(
            "POST",
            "/v1/key-packages/status",
            payload={"installation_ids": list(installation_ids)},
        )
        statuses: StatusMap = {}
        for installation_id, entry in (data or {}).items():
            statuses[installation_id] = (
                InstallationStatus.from_dict(installation_id, entry) if entry else None
            )
        return statuses
