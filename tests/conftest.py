import os
import sys

import pytest

# Ensure the project root is on the module search path when the package is not
# installed, so ``import linksweep`` works during test collection.
ROOT_DIR = os.path.dirname(os.path.dirname(__file__))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

from linksweep.config import load_settings  # noqa: E402


@pytest.fixture
def settings():
    """A private copy of the settings that tests may change freely."""
    return load_settings()
