import pytest

import rivulet
from rivulet import _tracking, debug, source


@pytest.fixture(autouse=True)
def _clean_globals():
    """Each test starts with built-in defaults, no debug hooks and an empty queue."""
    yield
    rivulet.reset_defaults()
    debug.disable()
    source.set_scheduler(None)
    _tracking._pending.clear()
    _tracking._batch_depth = 0
