"""Delivers transfer events to connected WebSocket clients."""

import asyncio
from typing import Any, Dict, Set

from common.constants import RECENT_TRANSFERS_LIMIT
from common.logging_config import get_logger
from stash.repositories.transfer_log_repository import TransferLogRepository
from stash.telemetry import TransferChannel, TransferEvent

logger = get_logger(__name__)

RECENT_TRANSFERS = "recent_transfers"


class TransferBroadcaster:
    """
    Consumes the transfer channel and fans each event out to every socket
    subscribed for the event's owner.

    Subscribers only need an async send_json(payload) method, which
    fastapi.WebSocket provides.
    """

    def __init__(self, channel: TransferChannel):
        self.channel = channel
        self._subscribers: Dict[str, Set[Any]] = {}
        self._running = False
        self._task = None

    async def subscribe(self, owner_id: str, socket: Any) -> None:
        """
        Register a socket and send it the owner's recent transfer history.
        """
        self._subscribers.setdefault(owner_id, set()).add(socket)
        logger.info(f"Subscriber added for owner {owner_id} ({len(self._subscribers[owner_id])} connected)")

        recent = TransferLogRepository.list_recent(owner_id, RECENT_TRANSFERS_LIMIT)
        await socket.send_json({"event": RECENT_TRANSFERS, "data": [log.to_dict() for log in recent]})

    def unsubscribe(self, owner_id: str, socket: Any) -> None:
        sockets = self._subscribers.get(owner_id)
        if not sockets:
            return
        sockets.discard(socket)
        if not sockets:
            del self._subscribers[owner_id]
        logger.info(f"Subscriber removed for owner {owner_id}")

    def subscriber_count(self, owner_id: str) -> int:
        return len(self._subscribers.get(owner_id, ()))

    async def deliver(self, event: TransferEvent) -> int:
        """
        Send one event to the owner's sockets. Sockets that fail are dropped.

        Returns:
            Number of sockets the event reached
        """
        delivered = 0
        payload = {"event": event.event, "data": event.data}

        for socket in list(self._subscribers.get(event.owner_id, ())):
            try:
                await socket.send_json(payload)
                delivered += 1
            except Exception as e:
                logger.warning(f"Dropping subscriber for owner {event.owner_id}: {e}")
                self.unsubscribe(event.owner_id, socket)

        return delivered

    async def start(self) -> None:
        if self._running:
            logger.warning("Broadcaster already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.info("Started transfer broadcaster")

    async def stop(self) -> None:
        if not self._running:
            return

        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

        logger.info("Stopped transfer broadcaster")

    async def _run(self) -> None:
        while self._running:
            try:
                event = await self.channel.get()
                await self.deliver(event)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in broadcaster: {e}", exc_info=True)
