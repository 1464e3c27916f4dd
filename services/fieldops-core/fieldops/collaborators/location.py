import httpx
import structlog
from pydantic import BaseModel

logger = structlog.get_logger("location")


class Location(BaseModel):
    lat: float
    lon: float


class LocationProvider:
    """Looks up a user's last known position; None means unavailable."""

    def __init__(self, base_url: str | None, timeout: float = 5) -> None:
        self._base_url = base_url.rstrip("/") if base_url else None
        self._client = httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        await self._client.aclose()

    async def get_current_location(self, user_id: str) -> Location | None:
        if not self._base_url:
            return None
        try:
            response = await self._client.get(f"{self._base_url}/location/{user_id}")
            response.raise_for_status()
            data = response.json()
            return Location(lat=float(data["lat"]), lon=float(data["lon"]))
        except (httpx.HTTPError, KeyError, TypeError, ValueError) as exc:
            logger.warning("location_unavailable", user_id=user_id, error=str(exc))
            return None
