"""Initialize database tables."""
import asyncio
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from distledger.database import init_db
from distledger.logging_config import setup_logging


if __name__ == "__main__":
    setup_logging()
    print("Creating database tables...")
    asyncio.run(init_db())
    print("Database tables created successfully!")
