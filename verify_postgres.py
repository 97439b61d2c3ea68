import asyncio
import sys

import asyncpg

from campus_shuttle.app.core.config import settings

# asyncpg wants a plain postgresql:// DSN
db_url = settings.database_url.replace("+asyncpg", "")

print(f"Testing connection to: {db_url}")


async def check_db():
    try:
        conn = await asyncpg.connect(db_url)
    except (OSError, asyncpg.PostgresError) as e:
        print(f"❌ Connection Failed: {e}")
        sys.exit(1)

    version = await conn.fetchval("SELECT version()")
    await conn.close()
    print(f"✅ Connection Successful! ({version})")


if __name__ == "__main__":
    asyncio.run(check_db())
