# src/routine_alerts/alerts/dispatcher.py

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ..core.errors import DispatchErrorKind, PushSendError
from ..core.ports import DeviceRegistry, PushSender

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class AlertMessage:
    title: str
    body: str
    data: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class DispatchResult:
    delivered: bool
    provider_error_kind: DispatchErrorKind | None = None


class NotificationDispatcher:
    """
    Best-effort, single-attempt push delivery.

    - No registered device: returns NO_REGISTERED_DEVICE without contacting the provider.
    - Provider failure: returns PROVIDER_ERROR. Nothing is retried here; the caller
      only persists its dedup marker on delivered=True.
    """

    def __init__(self, devices: DeviceRegistry, sender: PushSender) -> None:
        self._devices = devices
        self._sender = sender

    async def dispatch(self, user_id: str, message: AlertMessage) -> DispatchResult:
        token = self._devices.get_user_device_token(user_id)
        if not token:
            logger.info("No registered device for user=%s; alert not sent", user_id)
            return DispatchResult(delivered=False, provider_error_kind=DispatchErrorKind.NO_REGISTERED_DEVICE)

        try:
            await self._sender.send(
                token=token,
                title=message.title,
                body=message.body,
                data=dict(message.data),
            )
        except PushSendError as e:
            logger.warning("Push send failed user=%s: %s", user_id, e)
            return DispatchResult(delivered=False, provider_error_kind=DispatchErrorKind.PROVIDER_ERROR)

        return DispatchResult(delivered=True)
