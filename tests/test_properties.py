from hypothesis import given
from hypothesis import strategies as st

from brun.config import parse_time
from brun.watch import backoff_delay

bases = st.floats(min_value=0.01, max_value=30, allow_nan=False)
caps = st.floats(min_value=0.01, max_value=3600, allow_nan=False)


@given(base=bases, cap=caps, attempts=st.integers(min_value=1, max_value=60))
def test_backoff_is_monotonic_and_capped(base: float, cap: float, attempts: int) -> None:
    """
    Property: Successive retry delays never shrink, never exceed the cap, and
    strictly grow until the cap is reached.
    """
    delays = [backoff_delay(n, base, cap) for n in range(1, attempts + 1)]

    assert all(0 < d <= cap for d in delays)
    for prev, cur in zip(delays, delays[1:]):
        assert cur >= prev
        if prev < cap:
            assert cur > prev


@given(
    seconds=st.integers(min_value=0, max_value=10_000),
    unit=st.sampled_from(["s", "sec", "secs", ""]),
)
def test_parse_time_seconds_suffixes(seconds: int, unit: str) -> None:
    """Property: Every seconds spelling parses to the same value as the bare number."""
    assert parse_time(f"{seconds}{unit}") == float(seconds)
    assert parse_time(seconds) == float(seconds)


@given(minutes=st.integers(min_value=0, max_value=1_000))
def test_parse_time_minutes(minutes: int) -> None:
    """Property: Minutes are always sixty times the number of seconds."""
    assert parse_time(f"{minutes}min") == minutes * 60
    assert parse_time(f"{minutes} m") == minutes * 60
