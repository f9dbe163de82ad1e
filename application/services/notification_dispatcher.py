"""Push notification fan-out for a room message.

Recipients are the room's current members other than the sender that
hold a push token the transport accepts. Delivery is best effort and
at-most-once: every batch is submitted independently, failures are
logged and never retried or propagated to the caller.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import List, Sequence

from application.ports.chat import PushMessage, PushTransportPort
from domain.chat.entity import ConnectionSession, mask_token
from domain.common.exceptions import DeliveryException
from infrastructure.realtime.registry import ConnectionRegistry
from core.logging_config import get_logger


logger = get_logger(__name__)


@dataclass
class DispatchReport:
    room: str
    recipients: int = 0
    invalid_tokens: int = 0
    batches_sent: int = 0
    batches_failed: int = 0
    failed_tokens: List[str] = field(default_factory=list)


def chunked(items: Sequence, size: int) -> List[Sequence]:
    if size <= 0:
        raise ValueError("batch size must be positive")
    return [items[i:i + size] for i in range(0, len(items), size)]


class NotificationDispatcher:
    def __init__(
        self,
        *,
        registry: ConnectionRegistry,
        transport: PushTransportPort,
        title_template: str = "{username} in {room}",
    ) -> None:
        self._registry = registry
        self._transport = transport
        self._title_template = title_template

    def recipients_for(self, room: str, sender_username: str) -> tuple[List[ConnectionSession], int]:
        """Return (recipients, invalid_token_count) for a message in ``room``."""
        recipients: List[ConnectionSession] = []
        invalid = 0
        for session in self._registry.members_of(room):
            if session.username == sender_username or not session.push_token:
                continue
            if not self._transport.is_valid_token(session.push_token):
                invalid += 1
                logger.warning(
                    "push_token_invalid",
                    room=room,
                    connection_id=session.connection_id,
                    token=mask_token(session.push_token),
                )
                continue
            recipients.append(session)
        return recipients, invalid

    async def dispatch(self, room: str, sender_username: str, body: str) -> DispatchReport:
        report = DispatchReport(room=room)
        recipients, report.invalid_tokens = self.recipients_for(room, sender_username)
        report.recipients = len(recipients)
        if not recipients:
            logger.debug("push_dispatch_skipped", room=room, invalid_tokens=report.invalid_tokens)
            return report

        title = self._title_template.format(username=sender_username, room=room)
        messages = [
            PushMessage(
                to=session.push_token,
                title=title,
                body=body,
                data={"room": room, "username": sender_username},
            )
            for session in recipients
        ]
        batches = chunked(messages, self._transport.max_batch_size)
        results = await asyncio.gather(*(self._send(room, i, batch) for i, batch in enumerate(batches)))
        for batch, ok in zip(batches, results):
            if ok:
                report.batches_sent += 1
            else:
                report.batches_failed += 1
                report.failed_tokens.extend(m.to for m in batch)

        logger.info(
            "push_dispatched",
            room=room,
            recipients=report.recipients,
            invalid_tokens=report.invalid_tokens,
            batches_sent=report.batches_sent,
            batches_failed=report.batches_failed,
        )
        return report

    async def _send(self, room: str, index: int, batch: Sequence[PushMessage]) -> bool:
        try:
            await self._transport.send_batch(batch)
            return True
        except DeliveryException as exc:
            logger.error("push_batch_failed", room=room, batch=index, size=len(batch), error=exc.message)
        except Exception as exc:
            logger.error("push_batch_error", room=room, batch=index, size=len(batch), error=str(exc), exc_info=True)
        return False
