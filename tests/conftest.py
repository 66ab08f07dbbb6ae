import os
import tempfile

# keep test log files out of the repo; must run before config is imported
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="credit_block_logs_"))

import pytest

from config import Destination, JobConfig
from _testutil import BASE_URL


@pytest.fixture
def job_config():
    return JobConfig(
        env="TEST",
        destination=Destination(name="S4HCLOUD", url=BASE_URL, username="user", password="secret"),
        frequency_minutes=1,
        request_timeout=5.0,
    )
