from __future__ import annotations
import logging
from typing import Any

from .database import CollectionGateway

logger = logging.getLogger(__name__)

ALL_TEAMS = "All"
BOOKING_STEPS = ("service", "details", "confirm")


class ServiceCatalog:
    """Read-only view of packages and teams for the booking screen."""

    def __init__(self, gateway: CollectionGateway):
        self.gateway = gateway
        self.packages: list[dict[str, Any]] = []
        self.teams: list[dict[str, Any]] = []

    async def load(self) -> None:
        self.packages = await self.gateway.list("packages")
        self.teams = await self.gateway.list("teams")
        logger.debug(f"Catalog loaded: {len(self.packages)} packages, {len(self.teams)} teams")

    def team_filters(self) -> list[str]:
        return [ALL_TEAMS, *(team["name"] for team in self.teams)]

    def filter_packages(self, team: str = ALL_TEAMS) -> list[dict[str, Any]]:
        if team == ALL_TEAMS:
            return list(self.packages)
        return [pkg for pkg in self.packages if pkg.get("team") == team]


class BookingFlow:
    def __init__(self, form_data: dict[str, Any] | None = None, step: int = 0):
        self.form_data = dict(form_data or {})
        self.step = max(0, min(step, len(BOOKING_STEPS) - 1))

    @property
    def step_name(self) -> str:
        return BOOKING_STEPS[self.step]

    def next_step(self) -> None:
        self.step = min(self.step + 1, len(BOOKING_STEPS) - 1)

    def prev_step(self) -> None:
        self.step = max(self.step - 1, 0)

    def select_package(self, package: dict[str, Any]) -> None:
        self.form_data.update(
            title=package["title"],
            price=package["price"],
            team=package["team"],
            duration=package["duration"],
        )
        self.next_step()
