import logging
import re
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends
from pymongo import ReturnDocument
from pymongo.database import Database

from database import get_db, utcnow
from errors import InvalidArgument, NotFound
from schemas import CarouselSettings
from security import require_admin

logger = logging.getLogger(__name__)

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


def _parse_int(value: Any) -> int:
    """Leading integer of the value's text, 0 when there is none ("4500ms" -> 4500, "4.5e3" -> 4)."""
    match = _LEADING_INT.match(str(value))
    return int(match.group(1)) if match else 0


def coerce_carousel(value: Any) -> Dict[str, Any]:
    if not isinstance(value, dict):
        raise InvalidArgument("Invalid value for carousel setting")
    defaults = CarouselSettings()
    auto_play = value.get("autoPlay")
    return CarouselSettings(
        autoPlay=auto_play if isinstance(auto_play, bool) else defaults.autoPlay,
        interval=_parse_int(value.get("interval")) or defaults.interval,
    ).model_dump()


# keys with a validated shape; anything else is stored as given
COERCERS = {
    "carousel": coerce_carousel,
}


class SettingsService:
    def __init__(self, db: Database):
        self.settings = db["settings"]

    def get(self, key: str) -> Any:
        setting = self.settings.find_one({"key": key})
        if not setting:
            raise NotFound("Setting not found")
        return setting["value"]

    def put(self, key: str, value: Any) -> Dict[str, Any]:
        coerce = COERCERS.get(key)
        if coerce:
            value = coerce(value)
        setting = self.settings.find_one_and_update(
            {"key": key},
            {"$set": {"value": value, "updated_at": utcnow()}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        logger.info("Setting %s updated", key)
        return {"key": setting["key"], "value": setting["value"]}


def get_settings_service(db: Database = Depends(get_db)) -> SettingsService:
    return SettingsService(db)


router = APIRouter(prefix="/settings", tags=["settings"])


@router.get("/{key}")
def get_setting(key: str, settings: SettingsService = Depends(get_settings_service)):
    return settings.get(key)


@router.put("/{key}")
def put_setting(key: str, value: Any = Body(...), user: Dict[str, Any] = Depends(require_admin),
                settings: SettingsService = Depends(get_settings_service)):
    return settings.put(key, value)
