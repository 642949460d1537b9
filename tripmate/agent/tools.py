"""
Agent tools: the uniform tool interface and the two local tools.

Local tools: get_current_date (Asia/Shanghai), get_weather (Open-Meteo API).
Tools from stdio MCP servers and HTTP tool servers are wrapped in the same Tool type by
tripmate.agent.capabilities.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo

import httpx

from tripmate.core.config import LOCAL_TIMEZONE, OPEN_METEO_FORECAST, OPEN_METEO_GEOCODE

logger = logging.getLogger(__name__)

ToolHandler = Callable[[dict[str, Any]], Awaitable[str]]

# Shown to the user instead of raw tool names; remote names are "<server>_<tool>"
TOOL_DISPLAY_NAMES: dict[str, str] = {
    "get_current_date": "Get current date",
    "get_weather": "Check weather",
    "amap_weather": "Check weather",
    "amap_poi_search": "Search places",
    "amap_geocode": "Geocode address",
    "amap_direction": "Plan route",
    "variflight_search_flights_by_dep_arr": "Search flights (by route)",
    "variflight_search_flights_by_number": "Search flights (by number)",
    "variflight_get_flight_transfer_info": "Search connecting flights",
    "variflight_flight_happiness_index": "Flight comfort index",
    "variflight_get_realtime_location_by_anum": "Aircraft live position",
    "variflight_get_future_weather_by_airport": "Airport weather forecast",
    "train_search_tickets": "Search train tickets",
    "train_filter_trains": "Filter trains",
    "train_query_station": "Look up station",
    "train_query_transfer": "Search train transfers",
}


def get_tool_display_name(name: str) -> str:
    return TOOL_DISPLAY_NAMES.get(name, name)


@dataclass
class Tool:
    name: str
    description: str
    handler: ToolHandler
    parameters: dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})
    display_name: str | None = None

    def __post_init__(self) -> None:
        if self.display_name is None:
            self.display_name = get_tool_display_name(self.name)

    def to_openai(self) -> dict[str, Any]:
        """OpenAI function-calling definition."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

    async def invoke(self, arguments: dict[str, Any] | None) -> str:
        return await self.handler(arguments or {})


_WEEKDAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


def current_date_text(now: datetime | None = None) -> str:
    now = now or datetime.now(ZoneInfo(LOCAL_TIMEZONE))
    return f"Today is {now:%Y-%m-%d} ({_WEEKDAYS[now.weekday()]}), local time {now:%H:%M} ({LOCAL_TIMEZONE})"


async def _current_date(arguments: dict[str, Any]) -> str:
    return current_date_text()


# WMO weather codes (abbreviated) for Open-Meteo
_WMO_CODES = {
    0: "Clear sky",
    1: "Mainly clear",
    2: "Partly cloudy",
    3: "Overcast",
    45: "Fog",
    48: "Depositing rime fog",
    51: "Light drizzle",
    53: "Moderate drizzle",
    55: "Dense drizzle",
    61: "Slight rain",
    63: "Moderate rain",
    65: "Heavy rain",
    71: "Slight snow",
    73: "Moderate snow",
    75: "Heavy snow",
    80: "Slight rain showers",
    81: "Moderate rain showers",
    82: "Violent rain showers",
    95: "Thunderstorm",
    96: "Thunderstorm with slight hail",
    99: "Thunderstorm with heavy hail",
}


async def fetch_weather(client: httpx.AsyncClient, city: str) -> str:
    """Current weather for a city from Open-Meteo (free, no API key)."""
    city = (city or "").strip()
    if not city:
        return "Error: city is required."
    geo = await client.get(OPEN_METEO_GEOCODE, params={"name": city, "count": 1, "language": "zh"})
    if geo.status_code != 200:
        return f"Weather API error: geocode returned {geo.status_code}."
    results = geo.json().get("results") or []
    if not results:
        return f"No location found for: {city}."
    loc = results[0]
    lat, lon = loc.get("latitude"), loc.get("longitude")
    if lat is None or lon is None:
        return "Could not get coordinates for that location."
    forecast = await client.get(
        OPEN_METEO_FORECAST,
        params={
            "latitude": lat,
            "longitude": lon,
            "current": "temperature_2m,relative_humidity_2m,weather_code",
            "timezone": LOCAL_TIMEZONE,
        },
    )
    if forecast.status_code != 200:
        return f"Weather API error: forecast returned {forecast.status_code}."
    cur = forecast.json().get("current") or {}
    code = cur.get("weather_code", 0)
    lines = [
        f"Location: {loc.get('name', city)} ({loc.get('country_code', '')})",
        f"Conditions: {_WMO_CODES.get(code, f'Weather code {code}')}",
    ]
    if cur.get("temperature_2m") is not None:
        lines.append(f"Temperature: {cur['temperature_2m']} °C")
    if cur.get("relative_humidity_2m") is not None:
        lines.append(f"Relative humidity: {cur['relative_humidity_2m']}%")
    return "\n".join(lines)


def build_local_tools(http: httpx.AsyncClient) -> list[Tool]:
    """Local tools; get_weather shares the registry's HTTP client."""

    async def _weather(arguments: dict[str, Any]) -> str:
        return await fetch_weather(http, arguments.get("city") or "")

    return [
        Tool(
            name="get_current_date",
            description=(
                "Get the current date, weekday and local time in China. Use when the user mentions "
                "today, tomorrow, this weekend or any relative date."
            ),
            handler=_current_date,
        ),
        Tool(
            name="get_weather",
            description="Get current weather for a city (e.g. 三亚, 成都). Returns conditions, temperature and humidity.",
            handler=_weather,
            parameters={
                "type": "object",
                "properties": {
                    "city": {"type": "string", "description": "City name, Chinese or English"},
                },
                "required": ["city"],
            },
        ),
    ]
