"""
Print every station with its live waiting count.

Usage: python list_stations.py [MONGODB_URL] [DATABASE_NAME]
"""

import asyncio
import sys

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import PyMongoError

from medqueue.config import get_settings

WAITING_STATUSES = ["waiting", "called", "recalled"]


async def list_stations(mongodb_url: str, database_name: str):
    print(f"Connecting to {mongodb_url}...")
    client = AsyncIOMotorClient(mongodb_url)
    db = client[database_name]

    try:
        # Check connection first
        await client.admin.command('ping')

        cursor = db["stations"].find({}).sort([("kind", 1), ("name", 1)])
        stations = await cursor.to_list(length=500)

        if not stations:
            print("No stations found.")
            return

        print(f"\nFound {len(stations)} station(s):")
        print("-" * 96)
        print(f"{'Code':<32} | {'Kind':<18} | {'State':<8} | {'Waiting':>7} | {'Served':>6} | {'ID'}")
        print("-" * 96)
        for station in stations:
            waiting = await db["queue_entries"].count_documents({
                "station_id": str(station["_id"]),
                "status": {"$in": WAITING_STATUSES}
            })
            state = "paused" if station.get("is_paused") else "open"
            if not station.get("is_active", True):
                state = "inactive"
            print(
                f"{station.get('code', 'N/A'):<32} | {station.get('kind', 'N/A'):<18} | "
                f"{state:<8} | {waiting:>7} | {station.get('served_today', 0):>6} | {station['_id']}"
            )
    except PyMongoError as e:
        print(f"Error: {e}")
    finally:
        client.close()


if __name__ == "__main__":
    settings = get_settings()
    url = sys.argv[1] if len(sys.argv) > 1 else settings.MONGODB_URL
    name = sys.argv[2] if len(sys.argv) > 2 else settings.DATABASE_NAME

    if sys.platform == 'win32':
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
    asyncio.run(list_stations(url, name))
