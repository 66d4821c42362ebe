# src/routine_alerts/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the alert engine.

The engine depends on Protocols instead of concrete implementations.
This keeps storage and the weather/push providers swappable and makes testing easier.
"""

from typing import TYPE_CHECKING, Any, Awaitable, Protocol

if TYPE_CHECKING:
    from ..weather.models import Forecast


class DeviceRegistry(Protocol):
    """Identity side of persistence: where to push alerts for a user."""

    def get_user_device_token(self, user_id: str) -> str | None: ...


class AlertTaskRepo(DeviceRegistry, Protocol):
    """Persistence collaborator as seen by the alert scheduler."""

    def find_eligible_outdoor_tasks(
            self,
            *,
            now_ts: float,
            horizon_seconds: float,
            grace_seconds: float = 0.0,
            limit: int = 500,
    ) -> list[Any]: ...

    def set_alert_marker(self, task_id: int, due_snapshot: float, *, now_ts: float | None = None) -> bool: ...

    def get_user_default_location(self, user_id: str) -> str | None: ...


class ForecastSource(Protocol):
    """Weather provider wrapper: location text -> time-ordered samples."""

    def get_forecast(self, location: str) -> Awaitable[Forecast]: ...


class PushSender(Protocol):
    """
    Push-notification provider port.

    Implementations raise PushSendError when the provider rejects the message
    or cannot be reached. No delivery receipt is awaited.
    """

    def send(
            self,
            *,
            token: str,
            title: str,
            body: str,
            data: dict[str, str],
    ) -> Awaitable[None]: ...
