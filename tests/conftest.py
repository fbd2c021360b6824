import pytest

from agentmon.model.params import RetryPolicy


@pytest.fixture
def fast_policy() -> RetryPolicy:
    return RetryPolicy(
        max_attempts=3,
        initial_delay_s=0,
        multiplier=2,
        max_delay_s=1,
        page_attempts=3,
        page_size=50,
    )
