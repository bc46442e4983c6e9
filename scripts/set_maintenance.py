"""Turn the global maintenance flag on or off."""

import argparse

from dotenv import load_dotenv

from gatekeeper.db import SessionLocal
from gatekeeper.services.platform_settings import platform_settings


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("state", choices=["on", "off", "status"])
    args = parser.parse_args()

    load_dotenv()
    db = SessionLocal()
    try:
        if args.state == "status":
            active = platform_settings.is_maintenance_active(db)
        else:
            active = platform_settings.set_maintenance(db, args.state == "on").value_json
        print(f"Maintenance mode is {'on' if active else 'off'}.")
    finally:
        db.close()


if __name__ == "__main__":
    main()
