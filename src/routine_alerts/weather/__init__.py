"""
Weather subsystem.

Components:
- models.py: ForecastSample, ResolvedLocation, Forecast, WeatherCondition
- openweather.py: geocoding + One Call client with retries and a short-lived cache
"""
