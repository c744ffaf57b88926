import os
import sys

import pytest

# Add the project root directory to sys.path so that 'flowsync' can be imported
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if project_root not in sys.path:
    sys.path.insert(0, project_root)


@pytest.fixture(autouse=True)
def _no_real_credentials(monkeypatch):
    """Keep developer credentials and tunables out of Settings() during tests."""
    for name in ("KLAVIYO_API_KEY", "AIRTABLE_API_KEY", "AIRTABLE_BASE_ID", "MAX_RETRIES",
                 "INITIAL_BACKOFF_SECONDS", "AIRTABLE_BATCH_SIZE", "AIRTABLE_FLOWS_TABLE"):
        monkeypatch.delenv(name, raising=False)
