"""Race store: races with their aid stations, drop bags and crew."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from pydantic import ValidationError

from ultraplan.models.races import AidStation, Race
from ultraplan.stores.base import CollectionStore, StoreResult, camelize, validation_message
from ultraplan.sync.base import Collection

logger = logging.getLogger("ultraplan.stores.races")


class RaceStore(CollectionStore[Race]):
    collection = Collection.RACES
    model = Race

    async def list_races(self) -> list[Race]:
        """Races ordered by date; undated races last."""
        races = list((await self._load()).values())
        return sorted(races, key=lambda r: (r.date is None, r.date or "", r.name))

    async def get_race(self, race_id: str) -> Race | None:
        return await self.get(race_id)

    async def add_race(self, data: Mapping[str, Any] | Race) -> StoreResult:
        return await self.add(data)

    async def update_race(self, race_id: str, changes: Mapping[str, Any]) -> StoreResult:
        """Merge ``changes`` into the race; fields not named are kept."""
        return await self.update(race_id, changes)

    async def delete_race(self, race_id: str) -> StoreResult:
        return await self.delete(race_id)

    async def add_aid_station(self, race_id: str, data: Mapping[str, Any]) -> StoreResult:
        """Append an aid station; ``StoreResult.id`` is the new station's id."""
        races = await self._load()
        race = races.get(race_id)
        if race is None:
            return StoreResult(success=False, id=race_id, error="race not found")
        try:
            station = AidStation.model_validate(camelize(data))
        except ValidationError as exc:
            return StoreResult(success=False, error=validation_message(exc))

        stations = [s.to_json() for s in race.aid_stations] + [station.to_json()]
        races[race_id] = self._patched(race, {"aidStations": stations})
        result = await self._save(races, race_id)
        return StoreResult(success=result.success, id=station.id, error=result.error)

    async def remove_aid_station(self, race_id: str, station_id: str) -> StoreResult:
        races = await self._load()
        race = races.get(race_id)
        if race is None:
            return StoreResult(success=False, id=race_id, error="race not found")
        stations = [s.to_json() for s in race.aid_stations if s.id != station_id]
        if len(stations) == len(race.aid_stations):
            return StoreResult(success=False, id=station_id, error="aid station not found")

        # Drop bags staged at the removed station lose their station.
        preparation = race.preparation.to_json()
        for bag in preparation.get("dropBags", []):
            if bag.get("aidStationId") == station_id:
                bag["aidStationId"] = None

        races[race_id] = self._patched(
            race, {"aidStations": stations, "preparation": preparation}
        )
        result = await self._save(races, race_id)
        return StoreResult(success=result.success, id=station_id, error=result.error)
