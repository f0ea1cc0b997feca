"""Create (or recreate with --reset) the Voice Studio tables."""

import argparse
import asyncio

from app.config import settings
from app.db.database import init_db, drop_db


async def main(reset: bool = False):
    if reset:
        print(f"Dropping tables on {settings.database_url} ...")
        await drop_db()
    print("Creating database tables...")
    await init_db()
    print("Database initialized successfully!")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--reset", action="store_true", help="Drop all tables first")
    asyncio.run(main(reset=parser.parse_args().reset))
