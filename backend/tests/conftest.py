"""
Test configuration for the consultation backend tests.

sys.path is configured so BOTH import styles resolve:
  - 'from tests.fakes import ...'   (test helpers, using backend/ as root)
  - 'from backend.agents...'        (production modules, using project root)

This handles pytest being run from either the project root or backend/.
"""
import sys
from pathlib import Path

import pytest

_backend_dir = Path(__file__).parent.parent        # .../backend/
_project_root = _backend_dir.parent               # .../project root/

for _path in (_project_root, _backend_dir):
    if str(_path) not in sys.path:
        sys.path.insert(0, str(_path))

from backend.agents.consultation_agent.schemas import ContactMetadata, SessionConfig  # noqa: E402


@pytest.fixture
def eve() -> ContactMetadata:
    return ContactMetadata(name="Eve", email="e@x.com")


@pytest.fixture
def session_config() -> SessionConfig:
    """Production timing: warning 90, end 120, navigation 3 (virtual units)."""
    return SessionConfig(warning_delay=90, end_delay=120, navigation_delay=3)
