import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from gatekeeper.models.platform_settings import PlatformSetting

logger = logging.getLogger(__name__)

MAINTENANCE_MODE_KEY = "maintenance_mode"

_TRUTHY = {"1", "true", "yes", "on"}


def _to_bool(setting: PlatformSetting | None) -> bool:
    if setting is None:
        return False
    value = setting.value_json if setting.value_json is not None else setting.value_text
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value == 1
    if isinstance(value, str):
        return value.strip().lower() in _TRUTHY
    return False


class PlatformSettings:
    @staticmethod
    def get(db: Session, key: str) -> PlatformSetting | None:
        return db.scalars(
            select(PlatformSetting).where(PlatformSetting.key == key)
        ).first()

    @staticmethod
    def is_maintenance_active(db: Session) -> bool:
        return _to_bool(PlatformSettings.get(db, MAINTENANCE_MODE_KEY))

    @staticmethod
    def set_maintenance(db: Session, enabled: bool) -> PlatformSetting:
        setting = PlatformSettings.get(db, MAINTENANCE_MODE_KEY)
        if setting is None:
            setting = PlatformSetting(key=MAINTENANCE_MODE_KEY)
            db.add(setting)
        setting.value_json = enabled
        setting.value_text = None
        db.commit()
        db.refresh(setting)
        logger.info("Maintenance mode set to %s", enabled)
        return setting


platform_settings = PlatformSettings()
