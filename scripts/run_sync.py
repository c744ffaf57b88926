# scripts/run_sync.py

import json
import logging
import os
import sys
from dotenv import load_dotenv

# Adjust the path to import the flowsync package
# This assumes the script is run from the project root directory
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, project_root)

from flowsync.config import get_settings
from flowsync.api.exceptions import APIClientError
from flowsync.services.sync_service import run_sync

logger = logging.getLogger(__name__)

def main() -> int:
    """Runs one Klaviyo -> Airtable sync and prints the report as JSON."""
    # Load environment variables from .env file
    load_dotenv()
    settings = get_settings()

    logging.basicConfig(level=settings.LOG_LEVEL.upper(), format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    logger.info("--- Starting Klaviyo to Airtable Sync ---")

    missing = settings.missing_credentials()
    if missing:
        logger.error(f"Missing required environment variables: {', '.join(missing)}")
        return 2

    try:
        report = run_sync(
            settings.KLAVIYO_API_KEY,
            settings.AIRTABLE_API_KEY,
            settings.AIRTABLE_BASE_ID,
            settings=settings,
        )
    except APIClientError as e:
        logger.error(f"Sync failed: {e}")
        print(json.dumps({"success": False, "error": str(e)}, indent=2))
        return 1
    finally:
        logger.info("--- Klaviyo to Airtable Sync Finished ---")

    print(json.dumps({"success": True, "result": report.to_api_dict()}, indent=2))
    return 0

if __name__ == "__main__":
    sys.exit(main())
