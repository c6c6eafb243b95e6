import pytest

from simulation import ThreadCluster


@pytest.fixture
def thread_cluster():
    return ThreadCluster
