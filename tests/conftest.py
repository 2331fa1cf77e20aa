import logging
import os

import pytest

os.environ["LAMBDAWATCH_INTERNAL_TEST_RUN"] = "1"

LOG = logging.getLogger(__name__)


@pytest.fixture
def cleanups():
    cleanup_fns = []

    yield cleanup_fns

    for cleanup_callback in cleanup_fns[::-1]:
        try:
            cleanup_callback()
        except Exception as e:
            LOG.warning("Failed to execute cleanup", exc_info=e)
