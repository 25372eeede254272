from stepwise.core.retry import RetryStrategy
from stepwise.core.types import RetryContext

def test_exponential_backoff_is_capped():
    r = RetryStrategy(base_delay=1.0, multiplier=2.0, max_delay=5.0)
    assert [r.delay(n) for n in (1, 2, 3, 4, 5)] == [1.0, 2.0, 4.0, 5.0, 5.0]

def test_should_retry_follows_context():
    assert RetryStrategy.should_retry(RetryContext(max_attempts=3, attempt_number=2))
    assert not RetryStrategy.should_retry(RetryContext(max_attempts=3, attempt_number=3))
    assert not RetryStrategy.should_retry(RetryContext(max_attempts=1))
