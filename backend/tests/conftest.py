import os
import sys
from pathlib import Path

import pytest


# Ensure backend modules (config.py, negotiation/) are importable even when running pytest from repo root.
BACKEND_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(BACKEND_DIR))

# Avoid requiring real credentials during import-time initialization.
os.environ.setdefault("OPENAI_API_KEY", "test-openai-key")
os.environ.setdefault("CLAUDE_API_KEY", "test-claude-key")
os.environ.setdefault("NEGOTIATION_RETRY_DELAY_MS", "0")

from fakes import make_order_information  # noqa: E402


@pytest.fixture
def order_information():
    return make_order_information()
