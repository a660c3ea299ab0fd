"""Current weather lookup (Open-Meteo).

Geocodes the city, then asks for the current conditions. Errors are raised
as RemoteUnavailableError; the orchestrator falls back to its cache.
"""

import logging
from abc import abstractmethod
from typing import Any, Dict, Optional, Protocol, Tuple, runtime_checkable

import httpx

from fitplan.errors import RemoteUnavailableError

logger = logging.getLogger(__name__)

GEOCODING_URL = "https://geocoding-api.open-meteo.com/v1/search"
FORECAST_URL = "https://api.open-meteo.com/v1/forecast"

# Paris
DEFAULT_COORDINATES = (48.8566, 2.3522)

_RAINY_CODES = {51, 53, 55, 56, 57, 61, 63, 65, 66, 67, 71, 73, 75, 77, 80, 81, 82, 85, 86, 95, 96, 99}


def map_weather_code(code: Optional[int]) -> str:
    """Collapse a WMO weather code into sunny/cloudy/rainy."""
    if code in (0, 1):
        return "sunny"
    if code in _RAINY_CODES:
        return "rainy"
    return "cloudy"


@runtime_checkable
class WeatherClient(Protocol):
    @abstractmethod
    def current_weather(self, city: str) -> Dict[str, Any]:
        """Return ``{temp, condition, humidity, wind_speed}`` for ``city``."""
        ...


class OpenMeteoWeatherClient:
    def __init__(self, timeout: float = 10.0, transport: Optional[httpx.BaseTransport] = None):
        self._client = httpx.Client(timeout=timeout, transport=transport)

    def close(self) -> None:
        self._client.close()

    def _coordinates(self, city: str) -> Tuple[float, float]:
        try:
            response = self._client.get(
                GEOCODING_URL,
                params={"name": city, "count": 1, "language": "fr", "format": "json"},
            )
            response.raise_for_status()
            results = response.json().get("results") or []
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Geocoding failed for {city}: {e}")
            return DEFAULT_COORDINATES
        if not results:
            logger.warning(f"City not found: {city}, using default coordinates")
            return DEFAULT_COORDINATES
        return results[0]["latitude"], results[0]["longitude"]

    def current_weather(self, city: str) -> Dict[str, Any]:
        lat, lon = self._coordinates(city)
        try:
            response = self._client.get(
                FORECAST_URL,
                params={
                    "latitude": lat,
                    "longitude": lon,
                    "current_weather": "true",
                    "hourly": "relativehumidity_2m",
                    "timezone": "Europe/Paris",
                },
            )
            response.raise_for_status()
            data = response.json()
            current = data["current_weather"]
        except (httpx.HTTPError, ValueError, KeyError) as e:
            raise RemoteUnavailableError(f"Weather lookup for {city} failed: {e}") from e

        humidity_series = (data.get("hourly") or {}).get("relativehumidity_2m") or []
        humidity = humidity_series[0] if humidity_series and humidity_series[0] is not None else 50
        try:
            return {
                "temp": round(current["temperature"]),
                "condition": map_weather_code(current.get("weathercode")),
                "humidity": round(humidity),
                "wind_speed": round(current.get("windspeed") or 0),
            }
        except (KeyError, TypeError) as e:
            raise RemoteUnavailableError(f"Unexpected weather payload for {city}: {e}") from e
