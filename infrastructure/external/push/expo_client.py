"""Expo push notification client.

Sends batches to ``POST {base_url}/push/send``. A non-2xx response or a
transport failure turns into DeliveryException for that batch; tickets
with ``status == "error"`` inside an accepted batch are logged per token
and do not fail the batch.
"""
from __future__ import annotations

import re
from typing import Optional, Sequence

from application.ports.chat import PushMessage, PushTransportPort
from domain.chat.entity import mask_token
from domain.common.exceptions import DeliveryException
from core.logging_config import get_logger
from infrastructure.external.api_clients.base import BaseAPIClient, APIError


logger = get_logger(__name__)

_TOKEN_RE = re.compile(r"^(ExponentPushToken|ExpoPushToken)\[[^\[\]\s]+\]$")

EXPO_MAX_BATCH_SIZE = 100


class ExpoPushClient(BaseAPIClient, PushTransportPort):
    def __init__(
        self,
        *,
        base_url: str = "https://exp.host/--/api/v2",
        access_token: Optional[str] = None,
        batch_size: int = EXPO_MAX_BATCH_SIZE,
        timeout: float = 10.0,
        max_retries: int = 0,
    ) -> None:
        super().__init__(
            base_url=base_url,
            timeout=timeout,
            max_retries=max_retries,
            retry_delay=0.5,
            headers={"Accept-Encoding": "gzip, deflate"},
            auth_token=access_token,
        )
        self.max_batch_size = max(1, min(int(batch_size), EXPO_MAX_BATCH_SIZE))

    def is_valid_token(self, token: str) -> bool:
        return isinstance(token, str) and bool(_TOKEN_RE.match(token))

    async def send_batch(self, batch: Sequence[PushMessage]) -> None:
        if not batch:
            return
        if len(batch) > self.max_batch_size:
            raise DeliveryException(
                "Batch exceeds provider limit",
                batch_size=len(batch),
                details={"max_batch_size": self.max_batch_size},
            )
        body = [m.model_dump(exclude_none=True) for m in batch]
        try:
            response = await self.post("push/send", json_data=body)
        except APIError as exc:
            raise DeliveryException(
                str(exc),
                batch_size=len(batch),
                details={"status_code": exc.status_code},
            ) from exc

        tickets = []
        payload = response.data if isinstance(response.data, dict) else {}
        if isinstance(payload.get("data"), list):
            tickets = payload["data"]
        for message, ticket in zip(batch, tickets):
            if isinstance(ticket, dict) and ticket.get("status") == "error":
                logger.warning(
                    "push_ticket_error",
                    token=mask_token(message.to),
                    message=ticket.get("message"),
                    error=(ticket.get("details") or {}).get("error"),
                )
        logger.info("push_batch_sent", size=len(batch), tickets=len(tickets))
