# src/routine_alerts/weather/models.py

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum


class WeatherCondition(StrEnum):
    CLEAR = "clear"
    CLOUDS = "clouds"
    DRIZZLE = "drizzle"
    RAIN = "rain"
    STORM = "storm"
    SNOW = "snow"
    OTHER = "other"

    @classmethod
    def from_provider(cls, raw: str | None) -> WeatherCondition:
        """Map an OpenWeather 'main' group ("Rain", "Thunderstorm", ...) to a condition."""
        if not raw:
            return cls.OTHER
        value = raw.strip().lower()
        if "thunder" in value or "storm" in value or value in ("squall", "tornado"):
            return cls.STORM
        if "drizzle" in value:
            return cls.DRIZZLE
        if "rain" in value:
            return cls.RAIN
        if "snow" in value:
            return cls.SNOW
        if "cloud" in value:
            return cls.CLOUDS
        if value == "clear":
            return cls.CLEAR
        return cls.OTHER


@dataclass(slots=True, frozen=True)
class ForecastSample:
    """One forecast instant. Never persisted."""

    sample_ts: float
    condition: WeatherCondition
    # 0.0 - 1.0; None for providers/entries without probability data.
    precipitation_probability: float | None = None


@dataclass(slots=True, frozen=True)
class ResolvedLocation:
    name: str
    lat: float
    lon: float
    country: str | None = None

    @property
    def display_name(self) -> str:
        return f"{self.name}, {self.country}" if self.country else self.name


@dataclass(slots=True, frozen=True)
class Forecast:
    location: ResolvedLocation
    # Ordered by sample_ts ascending.
    samples: tuple[ForecastSample, ...] = field(default_factory=tuple)
    # 3600 for hourly forecasts, 86400 when only daily data was available.
    sample_spacing_seconds: float = 3600.0
