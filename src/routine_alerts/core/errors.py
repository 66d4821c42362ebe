# src/routine_alerts/core/errors.py

"""
Error taxonomy of the alert engine.

Forecast errors are raised by the forecast client and contained by the scheduler
at the per-task boundary. Dispatch problems are not raised at all: the dispatcher
reports them as a DispatchErrorKind on its result.
"""

from __future__ import annotations

from enum import StrEnum


class RoutineAlertsError(Exception):
    """Base class for errors raised by routine_alerts."""


class ForecastError(RoutineAlertsError):
    """Base class for forecast client failures."""

    kind = "forecast_error"


class LocationNotFound(ForecastError):
    """The location text could not be resolved to coordinates."""

    kind = "location_not_found"


class ProviderUnavailable(ForecastError):
    """Network failure or non-2xx status, after retries were exhausted."""

    kind = "provider_unavailable"


class ProviderResponseInvalid(ForecastError):
    """The provider answered, but the body is not what we expect. Never retried."""

    kind = "provider_response_invalid"


class PushSendError(RoutineAlertsError):
    """A push provider rejected or failed to accept a notification."""


class SweepFailed(RoutineAlertsError):
    """A sweep could not even list its candidate tasks."""


class DispatchErrorKind(StrEnum):
    NO_REGISTERED_DEVICE = "no_registered_device"
    PROVIDER_ERROR = "provider_error"
