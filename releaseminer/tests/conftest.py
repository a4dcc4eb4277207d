import os
import tempfile

import pytest

from releaseminer.infra.fetch import configure_transfer_permits


@pytest.fixture(scope="function", autouse=True)
def work_dir():
    with tempfile.TemporaryDirectory() as tmpdirname:
        os.environ["TEST_DIR"] = tmpdirname
        os.environ["RELEASEMINER_CONCURRENCY"] = "4"
        configure_transfer_permits(2)
        yield tmpdirname


@pytest.fixture(scope="session")
def config_file():
    return os.path.abspath(os.path.dirname(__file__) + "/config.yaml")
