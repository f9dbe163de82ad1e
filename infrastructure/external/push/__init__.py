"""
Push transport providers.

Only Expo is implemented; the notification dispatcher depends on
PushTransportPort, so another provider only needs ``is_valid_token``,
``send_batch`` and ``max_batch_size``.
"""
from typing import Optional

from core.config import settings
from .expo_client import ExpoPushClient


def build_push_transport() -> Optional[ExpoPushClient]:
    """根据配置创建推送客户端；未启用时返回 None"""
    cfg = settings.push
    if not cfg.enabled:
        return None
    return ExpoPushClient(
        base_url=cfg.base_url,
        access_token=cfg.access_token,
        batch_size=cfg.batch_size,
        timeout=cfg.timeout_s,
        max_retries=cfg.max_retries,
    )


__all__ = ["ExpoPushClient", "build_push_transport"]
