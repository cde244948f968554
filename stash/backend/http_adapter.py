"""HTTP client for a Discord-compatible REST API used as chunk storage."""

import asyncio
import json
from typing import Any, Dict, Optional

import httpx

from common.logging_config import get_logger
from common.types import ChunkReceipt
from stash.backend.adapter import StorageBackendAdapter
from stash.exceptions import BackendUnavailableError, TransferIOError

logger = get_logger(__name__)

FORUM_CHANNEL_TYPE = 15
MAX_POST_TITLE_LENGTH = 100
RATE_LIMIT_RETRIES = 3


class HttpBackendAdapter(StorageBackendAdapter):
    """
    Stores containers as forum channels, posts as forum threads and chunks
    as message attachments.
    """

    def __init__(
        self,
        api_url: str,
        token: str,
        guild_id: str,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize adapter; no connection is made until connect().

        Args:
            api_url: Base REST URL (e.g. https://discord.com/api/v10)
            token: Bot token sent as 'Authorization: Bot <token>'
            guild_id: Guild that owns every container
            timeout: Per-request timeout in seconds
            transport: Optional transport override (tests use httpx.MockTransport)
        """
        self.api_url = api_url.rstrip("/")
        self.guild_id = guild_id
        self._token = token
        self._timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._cdn_client: Optional[httpx.AsyncClient] = None

    @property
    def is_ready(self) -> bool:
        return self._client is not None

    async def connect(self) -> None:
        if self._client is not None:
            return
        if not self._token:
            raise BackendUnavailableError("No backend token configured")

        client = httpx.AsyncClient(
            base_url=self.api_url,
            headers={"Authorization": f"Bot {self._token}"},
            timeout=self._timeout,
            transport=self._transport,
        )
        try:
            response = await client.get("/users/@me")
        except httpx.HTTPError as e:
            await client.aclose()
            raise BackendUnavailableError(f"Backend unreachable at {self.api_url}: {e}")

        if response.status_code != 200:
            await client.aclose()
            raise BackendUnavailableError(f"Backend rejected credentials (status {response.status_code})")

        self._client = client
        # attachment URLs live on another host; never send the bot token there
        self._cdn_client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        logger.info(f"Connected to storage backend at {self.api_url} as {response.json().get('username')}")

    async def disconnect(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None
        if self._cdn_client:
            await self._cdn_client.aclose()
            self._cdn_client = None
        logger.info("Disconnected from storage backend")

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise BackendUnavailableError("Storage backend is not connected")
        return self._client

    async def _request(self, method: str, path: str, allow_missing: bool = False, **kwargs) -> Optional[httpx.Response]:
        """
        Send a request, waiting out rate limits.

        Returns:
            The response, or None for a 404 when allow_missing is set

        Raises:
            TransferIOError: On transport errors or unexpected statuses
        """
        client = self._ensure_client()

        for attempt in range(RATE_LIMIT_RETRIES + 1):
            try:
                response = await client.request(method, path, **kwargs)
            except httpx.HTTPError as e:
                raise TransferIOError(f"{method} {path} failed: {e}")

            if response.status_code == 429 and attempt < RATE_LIMIT_RETRIES:
                retry_after = float(response.headers.get("Retry-After", "1"))
                logger.warning(f"Rate limited on {method} {path}, retrying in {retry_after}s")
                await asyncio.sleep(retry_after)
                continue

            if response.status_code == 404 and allow_missing:
                return None

            if response.is_error:
                raise TransferIOError(
                    f"{method} {path} returned {response.status_code}: {response.text[:200]}"
                )
            return response

        raise TransferIOError(f"{method} {path} still rate limited after {RATE_LIMIT_RETRIES} retries")

    async def create_container(self, parent_id: Optional[str], name: str) -> str:
        payload: Dict[str, Any] = {"name": name, "type": FORUM_CHANNEL_TYPE}
        if parent_id:
            payload["parent_id"] = parent_id

        response = await self._request("POST", f"/guilds/{self.guild_id}/channels", json=payload)
        container_id = response.json()["id"]
        logger.info(f"Created container {container_id} ({name})")
        return container_id

    async def create_post(self, container_id: str, title: str, body: str) -> str:
        payload = {
            "name": title[:MAX_POST_TITLE_LENGTH],
            "message": {"content": body},
        }
        response = await self._request("POST", f"/channels/{container_id}/threads", json=payload)
        post_id = response.json()["id"]
        logger.info(f"Created post {post_id} in container {container_id}")
        return post_id

    async def upload_chunk(self, post_id: str, data: bytes, chunk_label: str) -> ChunkReceipt:
        payload = {
            "content": chunk_label,
            "attachments": [{"id": 0, "filename": chunk_label}],
        }
        response = await self._request(
            "POST",
            f"/channels/{post_id}/messages",
            data={"payload_json": json.dumps(payload)},
            files={"files[0]": (chunk_label, data, "application/octet-stream")},
        )

        message = response.json()
        attachments = message.get("attachments") or []
        if not attachments:
            raise TransferIOError(f"Backend stored message {message.get('id')} without an attachment")

        attachment = attachments[0]
        return ChunkReceipt(
            message_id=message["id"],
            attachment_id=attachment["id"],
            retrieval_url=attachment["url"],
        )

    async def download_chunk(self, retrieval_url: str) -> bytes:
        self._ensure_client()
        try:
            response = await self._cdn_client.get(retrieval_url)
        except httpx.HTTPError as e:
            raise TransferIOError(f"Chunk download failed: {e}")

        if response.status_code != 200:
            raise TransferIOError(f"Chunk download returned {response.status_code}")
        return response.content

    async def delete_post(self, post_id: str) -> bool:
        response = await self._request("DELETE", f"/channels/{post_id}", allow_missing=True)
        if response is None:
            logger.warning(f"Post {post_id} was already gone")
        else:
            logger.info(f"Deleted post {post_id}")
        return True

    async def delete_container(self, container_id: str) -> bool:
        response = await self._request("DELETE", f"/channels/{container_id}", allow_missing=True)
        if response is None:
            logger.warning(f"Container {container_id} was already gone")
        else:
            logger.info(f"Deleted container {container_id}")
        return True

    async def rename_container(self, container_id: str, new_name: str) -> bool:
        await self._request("PATCH", f"/channels/{container_id}", json={"name": new_name})
        logger.info(f"Renamed container {container_id} to {new_name}")
        return True
