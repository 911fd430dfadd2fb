import sys
from pathlib import Path

# Ensure package root is importable when tests are executed directly
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def pytest_configure(config):
    """Keep tests independent of a developer's local backend settings."""
    import os

    os.environ["STORAGE_BACKEND"] = "memory"
    for name in ("JELLYFIN_URL", "JELLYFIN_API_KEY", "PROVIDER_RATE_LIMITS"):
        os.environ.pop(name, None)
