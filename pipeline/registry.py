"""
Vehicle registry lookup: registered-owner data for a detected plate.

An external collaborator, not part of the analysis itself. The compiler only
calls it for a real plate and treats any error as "registry unavailable".
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from .store import SupabaseRest


class VehicleRegistry(ABC):
    """Abstract "can look up a plate" capability."""

    @abstractmethod
    async def lookup(self, plate: str) -> dict[str, Any] | None:
        """Registry row for `plate`, or None when it is not registered."""


class InMemoryVehicleRegistry(VehicleRegistry):

    def __init__(self, vehicles: dict[str, dict[str, Any]] | None = None):
        self.vehicles = dict(vehicles or {})

    async def lookup(self, plate: str) -> dict[str, Any] | None:
        row = self.vehicles.get(plate)
        return dict(row) if row is not None else None


class SupabaseVehicleRegistry(VehicleRegistry):
    """`vehicles` table in a separate Supabase project, keyed by number_plate."""

    def __init__(self, rest: SupabaseRest, table: str = "vehicles"):
        self.rest = rest
        self.table = table

    async def lookup(self, plate: str) -> dict[str, Any] | None:
        rows = await self.rest.request(
            "GET", self.table, params={"number_plate": f"eq.{plate}", "select": "*"}
        )
        return rows[0] if rows else None
