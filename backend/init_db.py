"""
Database initialization script
Run this to create tables and seed the default scheme configuration
"""
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent))

from app.core.config import settings
from app.main import init_database


def main():
    print(f"Initializing {settings.DATABASE_URL} ...")
    init_database()
    print("✓ Tables created and defaults seeded")
    print(f"  Scheme start: {settings.SCHEME_START_DATE}, penalty trial: {settings.PENALTY_TRIAL_MONTHS} months")


if __name__ == "__main__":
    main()
