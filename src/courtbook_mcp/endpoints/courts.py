"""Court lookup endpoints."""

import logging
from typing import Any

from ..client import CourtBookClient
from ..models import ApiErrorException, Court

logger = logging.getLogger(__name__)


class CourtsEndpoint:
    """Endpoint for read-only court operations."""

    def __init__(self, client: CourtBookClient | None = None):
        """Initialize courts endpoint."""
        self.client = client or CourtBookClient()
        self._courts_cache: dict[str, Court] = {}

    async def get_courts(
        self, venue_id: str, sport_id: str | None = None
    ) -> dict[str, Any]:
        """Get active courts of a venue.

        Args:
            venue_id: Venue identifier
            sport_id: Sport identifier (optional)

        Returns:
            Result dictionary with the list of courts
        """
        if not venue_id:
            return {"success": False, "message": "venue_id is required", "data": None}

        try:
            courts = await self.client.with_retry(
                self.client.list_courts, venue_id, sport_id
            )
        except ApiErrorException as e:
            logger.error(f"API error listing courts for venue {venue_id}: {e.message}")
            return {
                "success": False,
                "message": f"Failed to load courts: {e.message}",
                "data": None,
            }

        for court in courts:
            self._courts_cache[court.id] = court
        logger.info(f"Loaded {len(courts)} courts for venue {venue_id}")
        return {
            "success": True,
            "message": f"Found {len(courts)} court(s)",
            "data": [court.model_dump() for court in courts],
        }

    async def get_court_by_id(self, court_id: str) -> Court | None:
        """Get court by id, from cache when already loaded."""
        if court_id in self._courts_cache:
            return self._courts_cache[court_id]
        court = await self.client.with_retry(self.client.get_court, court_id)
        if court is not None:
            self._courts_cache[court_id] = court
        return court


# Global courts endpoint instance
courts_endpoint = CourtsEndpoint()
