import sys
from pathlib import Path
import pytest

# Add project root to sys.path
# This ensures that 'console_stream' and 'tests.common' are importable during tests
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))


@pytest.fixture
def override_config():
    """Temporarily replace config values: override_config("SNOWFLAKE.EPOCH_MS", 5)."""
    from console_stream.config import config

    originals = []

    def _set(dotted: str, value):
        *parents, leaf = dotted.split(".")
        node = config
        for name in parents:
            node = getattr(node, name)
        originals.append((node, leaf, getattr(node, leaf)))
        config.defrost()
        setattr(node, leaf, value)
        config.freeze()

    try:
        yield _set
    finally:
        config.defrost()
        for node, leaf, value in reversed(originals):
            setattr(node, leaf, value)
        config.freeze()
