import sys
from pathlib import Path

import pytest

# Ensure project root is on sys.path for `import role_memory`
ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from role_memory.models import init_role_store  # noqa: E402


@pytest.fixture
def store(tmp_path):
    role_store = init_role_store(str(tmp_path / "roles.db"))
    yield role_store
    role_store.close()
