# src/routine_alerts/weather/openweather.py

from __future__ import annotations

"""
OpenWeather forecast client.

get_forecast(location):
- resolves the location (a "lat,lon" pair, or a city name via the geocoding API,
  taking the single best match),
- fetches the One Call forecast and normalizes it into ForecastSample objects,
- retries network errors / non-2xx statuses with exponential backoff,
- optionally caches results per location for less than one sweep period.

Provider-specific response shapes stay inside this module.
"""

import asyncio
import logging
import math
import re
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import httpx

from ..core.errors import LocationNotFound, ProviderResponseInvalid, ProviderUnavailable
from .models import Forecast, ForecastSample, ResolvedLocation, WeatherCondition

logger = logging.getLogger(__name__)

GEOCODING_PATH = "/geo/1.0/direct"
DEFAULT_ONECALL_PATH = "/data/3.0/onecall"

_COORD_RE = re.compile(r"^\s*(-?\d+(?:\.\d+)?)\s*,\s*(-?\d+(?:\.\d+)?)\s*$")

HOURLY_SPACING_SECONDS = 3600.0
DAILY_SPACING_SECONDS = 86400.0


@dataclass(frozen=True, slots=True)
class RetryBackoff:
    """
    Exponential backoff for provider calls.

    Defaults: 2 retries after the first attempt, waiting 0.5s then 1.5s.
    """

    max_retries: int = 2
    initial_seconds: float = 0.5
    factor: float = 3.0

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.initial_seconds < 0:
            raise ValueError("initial_seconds must be >= 0")
        if self.factor < 1.0:
            raise ValueError("factor must be >= 1.0")

    def delays(self) -> list[float]:
        return [self.initial_seconds * (self.factor**i) for i in range(self.max_retries)]


DEFAULT_BACKOFF = RetryBackoff()


def parse_coordinates(location: str) -> tuple[float, float] | None:
    """Return (lat, lon) if the text is a valid coordinate pair, else None."""
    m = _COORD_RE.match(location or "")
    if not m:
        return None
    lat, lon = float(m.group(1)), float(m.group(2))
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0):
        return None
    return lat, lon


def _parse_sample(entry: Any) -> ForecastSample | None:
    """Normalize one hourly/daily entry. Malformed entries yield None."""
    if not isinstance(entry, dict):
        return None

    dt = entry.get("dt")
    if isinstance(dt, bool) or not isinstance(dt, (int, float)) or not math.isfinite(dt):
        return None

    main: str | None = None
    weather = entry.get("weather")
    if isinstance(weather, list) and weather and isinstance(weather[0], dict):
        raw_main = weather[0].get("main")
        main = raw_main if isinstance(raw_main, str) else None

    pop: float | None = None
    raw_pop = entry.get("pop")
    if raw_pop is not None:
        if isinstance(raw_pop, bool) or not isinstance(raw_pop, (int, float)):
            return None
        pop = float(raw_pop)
        if not math.isfinite(pop) or not 0.0 <= pop <= 1.0:
            return None

    return ForecastSample(
        sample_ts=float(dt),
        condition=WeatherCondition.from_provider(main),
        precipitation_probability=pop,
    )


def parse_onecall(data: Any) -> tuple[list[ForecastSample], float]:
    """
    Turn a One Call body into time-ordered samples.

    Hourly samples are preferred; when the body has no hourly block the daily
    block is used instead. Returns (samples, sample spacing in seconds).
    """
    if not isinstance(data, dict):
        raise ProviderResponseInvalid("forecast body is not a JSON object")

    hourly = data.get("hourly")
    daily = data.get("daily")
    if hourly is not None and not isinstance(hourly, list):
        raise ProviderResponseInvalid("'hourly' is not a list")
    if daily is not None and not isinstance(daily, list):
        raise ProviderResponseInvalid("'daily' is not a list")

    if hourly:
        entries, spacing = hourly, HOURLY_SPACING_SECONDS
    elif daily:
        entries, spacing = daily, DAILY_SPACING_SECONDS
    elif hourly is None and daily is None:
        raise ProviderResponseInvalid("forecast body has neither 'hourly' nor 'daily'")
    else:
        return [], HOURLY_SPACING_SECONDS

    samples: list[ForecastSample] = []
    skipped = 0
    for entry in entries:
        sample = _parse_sample(entry)
        if sample is None:
            skipped += 1
            continue
        samples.append(sample)

    if not samples:
        raise ProviderResponseInvalid(f"no usable forecast entries ({skipped} malformed)")
    if skipped:
        logger.debug("Skipped %d malformed forecast entries", skipped)

    samples.sort(key=lambda s: s.sample_ts)
    return samples, spacing


def parse_geocoding(data: Any, query: str) -> ResolvedLocation:
    if not isinstance(data, list):
        raise ProviderResponseInvalid("geocoding body is not a JSON list")
    if not data:
        raise LocationNotFound(f"location not found: {query!r}")

    best = data[0]
    if not isinstance(best, dict):
        raise ProviderResponseInvalid("geocoding entry is not an object")
    try:
        lat = float(best["lat"])
        lon = float(best["lon"])
    except (KeyError, TypeError, ValueError) as e:
        raise ProviderResponseInvalid(f"geocoding entry without coordinates: {e}") from e

    name = best.get("name")
    country = best.get("country")
    return ResolvedLocation(
        name=name if isinstance(name, str) and name.strip() else query,
        lat=lat,
        lon=lon,
        country=country if isinstance(country, str) and country.strip() else None,
    )


@dataclass(slots=True)
class _CacheEntry:
    expires_at: float
    forecast: Forecast


class OpenWeatherForecastClient:
    """Forecast client for the OpenWeather geocoding + One Call APIs."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://api.openweathermap.org",
        onecall_path: str = DEFAULT_ONECALL_PATH,
        lang: str = "en",
        timeout_seconds: float = 7.0,
        cache_ttl_seconds: float = 0.0,
        backoff: RetryBackoff = DEFAULT_BACKOFF,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not api_key or not api_key.strip():
            raise RuntimeError("OpenWeather API key missing. Set ROUTINE_OPENWEATHER_API_KEY in your .env.")

        self._api_key = api_key.strip()
        self._base_url = base_url.rstrip("/")
        self._onecall_path = onecall_path
        self._lang = lang
        self._timeout = float(timeout_seconds)
        self._cache_ttl = max(0.0, float(cache_ttl_seconds))
        self._backoff = backoff
        self._transport = transport
        self._sleep = sleep
        self._clock = clock
        self._cache: dict[str, _CacheEntry] = {}

    @classmethod
    def from_settings(cls, settings: Any, **kwargs: Any) -> OpenWeatherForecastClient:
        return cls(
            settings.openweather_api_key or "",
            base_url=settings.openweather_base_url,
            onecall_path=settings.openweather_onecall_path,
            lang=settings.openweather_lang,
            timeout_seconds=settings.http_timeout_seconds,
            cache_ttl_seconds=settings.forecast_cache_seconds,
            **kwargs,
        )

    # ---- public API ----

    async def get_forecast(self, location: str) -> Forecast:
        """
        Forecast samples for a location, ordered by time ascending.

        Raises LocationNotFound, ProviderUnavailable or ProviderResponseInvalid.
        """
        key = self._cache_key(location)
        if not key:
            raise LocationNotFound("location is empty")

        cached = self._cache_get(key)
        if cached is not None:
            logger.debug("Forecast cache hit location=%s", key)
            return cached.forecast

        resolved = await self.resolve_location(location)
        data = await self._get_json(
            self._onecall_path,
            {
                "lat": resolved.lat,
                "lon": resolved.lon,
                "exclude": "minutely,current,alerts",
                "units": "metric",
                "lang": self._lang,
            },
        )
        samples, spacing = parse_onecall(data)
        forecast = Forecast(location=resolved, samples=tuple(samples), sample_spacing_seconds=spacing)

        logger.debug(
            "Forecast fetched location=%s resolved=%s samples=%d spacing=%.0fs",
            key,
            resolved.display_name,
            len(samples),
            spacing,
        )
        self._cache_put(key, forecast)
        return forecast

    async def resolve_location(self, location: str) -> ResolvedLocation:
        text = (location or "").strip()
        if not text:
            raise LocationNotFound("location is empty")

        coords = parse_coordinates(text)
        if coords is not None:
            lat, lon = coords
            return ResolvedLocation(name=f"{lat:.4f},{lon:.4f}", lat=lat, lon=lon)

        data = await self._get_json(GEOCODING_PATH, {"q": text, "limit": 1})
        return parse_geocoding(data, text)

    def clear_cache(self) -> None:
        self._cache.clear()

    # ---- internals ----

    @staticmethod
    def _cache_key(location: str) -> str:
        return " ".join((location or "").split()).lower()

    def _cache_get(self, key: str) -> _CacheEntry | None:
        if self._cache_ttl <= 0:
            return None
        entry = self._cache.get(key)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            self._cache.pop(key, None)
            return None
        return entry

    def _cache_put(self, key: str, forecast: Forecast) -> None:
        if self._cache_ttl <= 0:
            return
        self._cache[key] = _CacheEntry(expires_at=self._clock() + self._cache_ttl, forecast=forecast)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    async def _get_json(self, path: str, params: dict[str, Any]) -> Any:
        """
        GET base_url + path with bounded retries.

        Network errors and non-2xx statuses are retried; a body that is not JSON
        raises ProviderResponseInvalid right away.
        """
        url = f"{self._base_url}{path}"
        query = {**params, "appid": self._api_key}
        delays = self._backoff.delays()
        attempts = len(delays) + 1
        last_error = ""

        for attempt in range(1, attempts + 1):
            try:
                async with self._client() as client:
                    r = await client.get(url, params=query)
                    r.raise_for_status()
            except httpx.HTTPStatusError as e:
                last_error = f"HTTP {e.response.status_code}"
            except httpx.HTTPError as e:
                last_error = f"{e.__class__.__name__}: {e}"
            else:
                try:
                    return r.json()
                except ValueError as e:
                    raise ProviderResponseInvalid(f"{path}: body is not valid JSON") from e

            if attempt < attempts:
                delay = delays[attempt - 1]
                logger.warning(
                    "OpenWeather %s failed (%s), attempt %d/%d; retrying in %.1fs",
                    path,
                    last_error,
                    attempt,
                    attempts,
                    delay,
                )
                await self._sleep(delay)

        raise ProviderUnavailable(f"{path}: {last_error} after {attempts} attempts")
