from datetime import datetime, timedelta

import httpx
import structlog
from pydantic import BaseModel

from fieldops.errors import CollaboratorUnavailable
from fieldops.utils import utcnow

logger = structlog.get_logger("routing")


class RouteSummary(BaseModel):
    distance_meters: float
    duration_seconds: float
    eta: datetime
    traffic: str | None = None


def traffic_note(duration_seconds: float, distance_meters: float) -> str:
    # average speed in km/h over the whole route
    if duration_seconds <= 0:
        return "low"
    speed = (distance_meters / 1000) / (duration_seconds / 3600)
    if speed > 50:
        return "low"
    if speed > 30:
        return "moderate"
    if speed > 15:
        return "heavy"
    return "severe"


class RoutingClient:
    def __init__(self, base_url: str, api_key: str | None, timeout: float = 10) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._client = httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        await self._client.aclose()

    def is_available(self) -> bool:
        return bool(self._api_key)

    async def get_route(self, destination: str, priority_hint: str = "routine") -> RouteSummary | None:
        """Return a route summary, or None when the destination cannot be routed."""
        if not self.is_available():
            raise CollaboratorUnavailable("routing backend is not configured")
        try:
            response = await self._client.get(
                f"{self._base_url}/route",
                params={"destination": destination, "priority": priority_hint},
                headers={"Authorization": f"Bearer {self._api_key}"},
            )
        except httpx.HTTPError as exc:
            raise CollaboratorUnavailable(f"routing request failed: {exc}") from exc
        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise CollaboratorUnavailable(f"routing backend returned {response.status_code}")

        data = response.json()
        routes = data.get("routes") or [data]
        route = routes[0] if routes else None
        if not route or "distance" not in route or "duration" not in route:
            return None
        distance = float(route["distance"])
        duration = float(route["duration"])
        return RouteSummary(
            distance_meters=distance,
            duration_seconds=duration,
            eta=utcnow() + timedelta(seconds=duration),
            traffic=route.get("traffic") or traffic_note(duration, distance),
        )
