import unittest

from ticker.errors import FetchError, ProviderRateLimitError
from ticker.schemas.quote import FetchTarget
from ticker.services.fetcher import RetryingFetcher
from ticker.services.rate_limiter import RateLimiter
from ticker.services.storage import MemoryStore

TARGET = FetchTarget(vs_currency="usd", ids=["bitcoin", "ethereum", "pax-gold"])
PAYLOAD = [{"id": "bitcoin", "current_price": 98000.0}]


class FakeClock:
    def __init__(self, start_ms: int = 1_700_000_000_000) -> None:
        self.now = start_ms
        self.sleeps: list[float] = []

    def __call__(self) -> int:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += int(round(seconds * 1000))


class ScriptedClient:
    """Returns (or raises) each scripted outcome in order; the last one repeats."""

    def __init__(self, outcomes: list) -> None:
        self.outcomes = list(outcomes)
        self.calls = 0

    def get_markets(self, target: FetchTarget):
        self.calls += 1
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class Response:
    status_code = 429


class DuckTypedRateLimitError(Exception):
    def __init__(self):
        super().__init__("429 Too Many Requests")
        self.response = Response()


class RetryingFetcherTest(unittest.IsolatedAsyncioTestCase):
    def _fetcher(self, client, clock, **kwargs) -> RetryingFetcher:
        limiter = RateLimiter(
            store=MemoryStore(),
            window_ms=60_000,
            max_calls=kwargs.pop("max_calls", 100),
            buffer_ms=1000,
            cooldown_ms=kwargs.pop("cooldown_ms", 30_000),
            clock_ms=clock,
            sleep_fn=clock.sleep,
        )
        return RetryingFetcher(
            client=client,
            rate_limiter=limiter,
            max_retries=kwargs.pop("max_retries", 1),
            base_backoff_ms=kwargs.pop("base_backoff_ms", 3000),
            max_backoff_ms=kwargs.pop("max_backoff_ms", 30_000),
            max_jitter_ms=kwargs.pop("max_jitter_ms", 1000),
            request_spacing_ms=kwargs.pop("request_spacing_ms", 0),
            max_throttle_retries=kwargs.pop("max_throttle_retries", 5),
            sleep_fn=clock.sleep,
            jitter_fn=kwargs.pop("jitter_fn", lambda _ceiling: 0),
        )

    async def test_success_returns_payload_without_waiting(self):
        clock = FakeClock()
        client = ScriptedClient([PAYLOAD])
        fetcher = self._fetcher(client, clock)

        payload = await fetcher.fetch(TARGET)

        self.assertEqual(payload, PAYLOAD)
        self.assertEqual(client.calls, 1)
        self.assertEqual(clock.sleeps, [])

    async def test_backoff_doubles_and_is_capped(self):
        clock = FakeClock()
        last = ConnectionError("boom-last")
        client = ScriptedClient([TimeoutError("t1"), TimeoutError("t2"), TimeoutError("t3"), TimeoutError("t4"), last])
        fetcher = self._fetcher(client, clock, max_retries=4, base_backoff_ms=1000, max_backoff_ms=3000)

        with self.assertRaises(FetchError) as ctx:
            await fetcher.fetch(TARGET)

        self.assertEqual(client.calls, 5)
        self.assertEqual(clock.sleeps, [1.0, 2.0, 3.0, 3.0])
        self.assertIs(ctx.exception.cause, last)
        self.assertEqual(fetcher.metrics()["fetch_retries"], 4)

    async def test_explicit_retries_and_backoff_arguments_override_defaults(self):
        clock = FakeClock()
        client = ScriptedClient([TimeoutError("t")])
        fetcher = self._fetcher(client, clock, max_retries=0)

        with self.assertRaises(FetchError):
            await fetcher.fetch(TARGET, retries=2, backoff_ms=500)

        self.assertEqual(client.calls, 3)
        self.assertEqual(clock.sleeps, [0.5, 1.0])

    async def test_jitter_is_added_to_each_backoff(self):
        clock = FakeClock()
        ceilings = []

        def jitter(ceiling):
            ceilings.append(ceiling)
            return 250

        client = ScriptedClient([TimeoutError("t1"), TimeoutError("t2"), PAYLOAD])
        fetcher = self._fetcher(client, clock, max_retries=2, base_backoff_ms=3000, jitter_fn=jitter)

        await fetcher.fetch(TARGET)

        self.assertEqual(clock.sleeps, [3.25, 6.25])
        self.assertEqual(ceilings, [1000, 1000])

    async def test_no_retries_fails_after_single_attempt(self):
        clock = FakeClock()
        client = ScriptedClient([ValueError("malformed")])
        fetcher = self._fetcher(client, clock, max_retries=0)

        with self.assertRaises(FetchError):
            await fetcher.fetch(TARGET)

        self.assertEqual(client.calls, 1)
        self.assertEqual(clock.sleeps, [])

    async def test_provider_rate_limit_does_not_consume_retry_credit(self):
        clock = FakeClock()
        client = ScriptedClient([ProviderRateLimitError(), PAYLOAD])
        fetcher = self._fetcher(client, clock, max_retries=0, cooldown_ms=30_000)

        payload = await fetcher.fetch(TARGET)

        self.assertEqual(payload, PAYLOAD)
        self.assertEqual(client.calls, 2)
        self.assertEqual(clock.sleeps, [30.0])
        self.assertEqual(fetcher.metrics()["provider_throttled"], 1)
        self.assertEqual(fetcher.rate_limiter.read_counter().call_count, 1)

    async def test_duck_typed_429_is_treated_as_throttle(self):
        clock = FakeClock()
        client = ScriptedClient([DuckTypedRateLimitError(), PAYLOAD])
        fetcher = self._fetcher(client, clock, max_retries=0)

        payload = await fetcher.fetch(TARGET)

        self.assertEqual(payload, PAYLOAD)
        self.assertEqual(clock.sleeps, [30.0])

    async def test_provider_retry_after_is_honoured(self):
        clock = FakeClock()
        client = ScriptedClient([ProviderRateLimitError(retry_after_ms=7000), PAYLOAD])
        fetcher = self._fetcher(client, clock, max_retries=0)

        await fetcher.fetch(TARGET)

        self.assertEqual(clock.sleeps, [7.0])

    async def test_persistent_throttling_eventually_fails(self):
        clock = FakeClock()
        client = ScriptedClient([ProviderRateLimitError()])
        fetcher = self._fetcher(client, clock, max_retries=3, max_throttle_retries=2)

        with self.assertRaises(FetchError) as ctx:
            await fetcher.fetch(TARGET)

        self.assertEqual(client.calls, 3)
        self.assertIsInstance(ctx.exception.cause, ProviderRateLimitError)

    async def test_rate_limiter_is_consulted_before_every_attempt(self):
        clock = FakeClock()
        client = ScriptedClient([TimeoutError("t1"), TimeoutError("t2"), PAYLOAD])
        fetcher = self._fetcher(client, clock, max_retries=2, base_backoff_ms=10)

        await fetcher.fetch(TARGET)

        self.assertEqual(fetcher.rate_limiter.read_counter().call_count, 3)

    async def test_rate_limit_wait_applies_to_retries(self):
        clock = FakeClock()
        client = ScriptedClient([TimeoutError("t1"), PAYLOAD])
        fetcher = self._fetcher(client, clock, max_retries=1, base_backoff_ms=1000, max_calls=1)

        await fetcher.fetch(TARGET)

        # backoff of 1s, then the limiter waits out the rest of the 60s window plus buffer
        self.assertEqual(clock.sleeps, [1.0, 60.0])

    async def test_request_spacing_precedes_every_call(self):
        clock = FakeClock()
        client = ScriptedClient([TimeoutError("t1"), PAYLOAD])
        fetcher = self._fetcher(client, clock, max_retries=1, base_backoff_ms=1000, request_spacing_ms=500)

        await fetcher.fetch(TARGET)

        self.assertEqual(clock.sleeps, [0.5, 1.0, 0.5])


if __name__ == "__main__":
    unittest.main()
