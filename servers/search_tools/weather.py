"""servers/search_tools/weather.py

OpenWeatherMap client and the French weather report.

``format_weather_report`` is a pure function of the two API payloads, so
the report can be tested without the network.  The forecast endpoint
returns one point every 3 hours; entries 0, 2, 4 and 6 stand for today's
morning, afternoon, evening and night, entries 8 and 10 for tomorrow's
morning and afternoon.
"""

from __future__ import annotations

# Standard Library
import dataclasses
import logging
import math
from typing import Any, Final

# Third-Party Libraries
import httpx

# Local Modules
from toolchat.errors import ProviderError, WeatherDataError

logger = logging.getLogger(__name__)

OPENWEATHER_BASE_URL = "https://api.openweathermap.org/data/2.5"

# (forecast index, label) for each report line.
TODAY_SLOTS: Final[tuple[tuple[int, str], ...]] = (
    (0, "Matin"),
    (2, "Après-midi"),
    (4, "Soir"),
    (6, "Nuit"),
)
TOMORROW_SLOTS: Final[tuple[tuple[int, str], ...]] = (
    (8, "Matin"),
    (10, "Après-midi"),
)

# m/s → km/h
_MS_TO_KMH: Final[float] = 3.6


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves going up (2.5 → 3, -2.5 → -2)."""
    return math.floor(value + 0.5)


@dataclasses.dataclass(frozen=True, slots=True)
class ForecastSlot:
    label: str
    temperature: int
    description: str


@dataclasses.dataclass(frozen=True, slots=True)
class WeatherReport:
    """Rendered weather for one city.

    Attributes:
        city: Display name of the city.
        temperature: Current temperature, whole °C.
        description: Current conditions.
        humidity: Relative humidity in percent.
        wind_kmh: Wind speed, whole km/h.
        today: Four forecast slots for today.
        tomorrow: Two forecast slots for tomorrow.
        text: Multi-line French report.
    """

    city: str
    temperature: int
    description: str
    humidity: int
    wind_kmh: int
    today: tuple[ForecastSlot, ...]
    tomorrow: tuple[ForecastSlot, ...]
    text: str


def _description(entry: dict[str, Any]) -> str:
    conditions = entry.get("weather") or []
    if conditions and isinstance(conditions[0], dict):
        return str(conditions[0].get("description", "")).strip()
    return ""


def _slots(
    points: list[dict[str, Any]], layout: tuple[tuple[int, str], ...]
) -> tuple[ForecastSlot, ...]:
    return tuple(
        ForecastSlot(
            label=label,
            temperature=round_half_up(float(points[index]["main"]["temp"])),
            description=_description(points[index]),
        )
        for index, label in layout
    )


def _render(report_fields: dict[str, Any]) -> str:
    def line(slot: ForecastSlot) -> str:
        suffix = f", {slot.description}" if slot.description else ""
        return f"  {slot.label} : {slot.temperature}°C{suffix}"

    current = f"{report_fields['temperature']}°C"
    if report_fields["description"]:
        current += f", {report_fields['description']}"

    lines = [
        f"Météo à {report_fields['city']}",
        f"Actuellement : {current}",
        f"Humidité : {report_fields['humidity']} %",
        f"Vent : {report_fields['wind_kmh']} km/h",
        "",
        "Aujourd'hui :",
        *(line(slot) for slot in report_fields["today"]),
        "",
        "Demain :",
        *(line(slot) for slot in report_fields["tomorrow"]),
    ]
    return "\n".join(lines)


def format_weather_report(
    city: str, current: dict[str, Any], forecast: dict[str, Any]
) -> WeatherReport:
    """Build the weather report from OpenWeatherMap payloads.

    Args:
        city: City name as requested; used when ``current`` carries no name.
        current: ``/weather`` payload (``main.temp``, ``main.humidity``,
            ``wind.speed`` in m/s, ``weather[0].description``).
        forecast: ``/forecast`` payload whose ``list`` holds at least 11
            three-hourly points.

    Returns:
        The structured report and its text.

    Raises:
        WeatherDataError: A required field is missing or malformed.
    """
    try:
        points: list[dict[str, Any]] = forecast["list"]
        fields: dict[str, Any] = {
            "city": str(current.get("name") or city.strip().title()),
            "temperature": round_half_up(float(current["main"]["temp"])),
            "description": _description(current),
            "humidity": round_half_up(float(current["main"]["humidity"])),
            "wind_kmh": round_half_up(float(current["wind"]["speed"]) * _MS_TO_KMH),
            "today": _slots(points, TODAY_SLOTS),
            "tomorrow": _slots(points, TOMORROW_SLOTS),
        }
    except (KeyError, IndexError, TypeError, ValueError, AttributeError) as exc:
        raise WeatherDataError(f"Malformed weather payload: {exc!r}") from exc

    return WeatherReport(text=_render(fields), **fields)


class OpenWeatherClient:
    """Fetches current conditions and the 5-day forecast.

    Args:
        api_key: OpenWeatherMap ``appid``.
        timeout: Request timeout in seconds.
        client: Optional shared ``httpx.AsyncClient``.
    """

    def __init__(
        self,
        api_key: str,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key
        self.timeout = timeout
        self._client = client

    def _params(self, city: str, postal_code: str) -> dict[str, str]:
        params = {"appid": self.api_key, "units": "metric", "lang": "fr"}
        if postal_code:
            params["zip"] = f"{postal_code},fr"
        else:
            params["q"] = city
        return params

    async def _get(self, client: httpx.AsyncClient, endpoint: str, params: dict[str, str]) -> dict[str, Any]:
        response = await client.get(f"{OPENWEATHER_BASE_URL}/{endpoint}", params=params)
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, dict):
            raise WeatherDataError(f"Unexpected {endpoint} payload type: {type(payload).__name__}")
        return payload

    async def fetch(self, city: str, postal_code: str = "") -> tuple[dict[str, Any], dict[str, Any]]:
        """Return the ``(current, forecast)`` payloads for a city.

        Raises:
            ProviderError: On network errors, HTTP errors or non-JSON bodies.
        """
        params = self._params(city, postal_code)
        logger.info("[weather] city=%r postal_code=%r", city, postal_code)
        try:
            if self._client is not None:
                current = await self._get(self._client, "weather", params)
                forecast = await self._get(self._client, "forecast", params)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    current = await self._get(client, "weather", params)
                    forecast = await self._get(client, "forecast", params)
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("[weather] OpenWeatherMap failure: %s", exc, exc_info=True)
            raise ProviderError(f"OpenWeatherMap request failed: {exc}") from exc
        return current, forecast

    async def report(self, city: str, postal_code: str = "") -> WeatherReport:
        current, forecast = await self.fetch(city, postal_code)
        return format_weather_report(city, current, forecast)
