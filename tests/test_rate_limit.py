"""Tests for the leaky-bucket rate limiter."""

import threading
from unittest.mock import MagicMock, patch

import pytest
import requests

from canvaslms._auth import ApiKeyAuthProvider
from canvaslms._config import RateLimitConfig
from canvaslms._rate_limit import (
    DEFAULT_BUCKET_KEY,
    Bucket,
    BucketRegistry,
    ClientSideRateLimitError,
    RateLimitError,
    RateLimitMiddleware,
    RateLimitWouldBeExceededError,
    ServerSideRateLimitError,
    TokenAcquisitionTimeoutError,
)
from canvaslms._retry import RetryableError
from canvaslms._transport import HttpRequest
from canvaslms._utils import fingerprint
from support import FakeClock, StubTransport, make_response

HOST = "school.instructure.com"
URL = f"https://{HOST}/api/v1/courses"


def make_middleware(clock=None, auth=None, **overrides) -> RateLimitMiddleware:
    config = RateLimitConfig().with_overrides(overrides)
    registry = BucketRegistry(clock=clock or FakeClock())
    return RateLimitMiddleware(auth=auth or ApiKeyAuthProvider("1~key-a"), config=config, registry=registry)


# =============================================================================
# Bucket
# =============================================================================


class TestBucket:
    """Tests for Bucket arithmetic."""

    def make_bucket(self, remaining=3000.0, capacity=3000.0, leak_rate=50.0, last_update=0.0) -> Bucket:
        return Bucket(key="k", capacity=capacity, leak_rate=leak_rate, remaining=remaining, last_update=last_update)

    def test_sequential_charges_decrease_by_cost(self):
        bucket = self.make_bucket()

        assert bucket.charge(50, now=0.0) == 2950
        assert bucket.charge(50, now=0.0) == 2900
        assert bucket.charge(50, now=0.0) == 2850

    def test_charge_never_goes_below_zero(self):
        bucket = self.make_bucket(remaining=30)

        assert bucket.charge(50, now=0.0) == 0

    @pytest.mark.parametrize(
        "remaining, elapsed, expected",
        [
            (1000.0, 10.0, 1500.0),
            (2900.0, 10.0, 3000.0),
            (0.0, 0.0, 0.0),
            (0.0, 2.5, 125.0),
        ],
    )
    def test_refill_is_capped_at_capacity(self, remaining, elapsed, expected):
        bucket = self.make_bucket(remaining=remaining, last_update=100.0)

        assert bucket.refill(now=100.0 + elapsed) == expected
        assert bucket.last_update == 100.0 + elapsed

    def test_refill_ignores_clock_going_backwards(self):
        bucket = self.make_bucket(remaining=500, last_update=100.0)

        assert bucket.refill(now=90.0) == 500

    def test_refund_is_capped_at_capacity(self):
        bucket = self.make_bucket(remaining=2990)

        assert bucket.refund(50, now=0.0) == 3000

    def test_sync_clamps_reported_value(self):
        bucket = self.make_bucket(remaining=100)

        assert bucket.sync(-5, now=1.0) == 0
        assert bucket.sync(9999, now=2.0) == 3000
        assert bucket.sync(612.5, now=3.0) == 612.5
        assert bucket.last_update == 3.0

    def test_time_until(self):
        bucket = self.make_bucket(remaining=50, leak_rate=25)

        assert bucket.time_until(100) == 2.0
        assert bucket.time_until(50) == 0.0
        assert bucket.time_until(10) == 0.0


class TestBucketRegistry:
    """Tests for BucketRegistry."""

    def test_creates_full_bucket_on_first_use(self):
        registry = BucketRegistry(clock=FakeClock(42.0))

        bucket = registry.get("a", capacity=700, leak_rate=10)

        assert bucket.remaining == 700
        assert bucket.last_update == 42.0
        assert "a" in registry

    def test_returns_same_bucket_for_same_key(self):
        registry = BucketRegistry()

        assert registry.get("a", 700, 10) is registry.get("a", 700, 10)
        assert registry.get("a", 700, 10) is not registry.get("b", 700, 10)

    def test_reset_one_or_all(self):
        registry = BucketRegistry()
        registry.get("a", 700, 10)
        registry.get("b", 700, 10)

        registry.reset("a")
        assert registry.keys() == ["b"]

        registry.reset()
        assert registry.keys() == []

    def test_registries_are_isolated(self):
        first, second = BucketRegistry(), BucketRegistry()
        first.get("a", 700, 10).remaining = 1

        assert second.get("a", 700, 10).remaining == 700


# =============================================================================
# Exceptions
# =============================================================================


class TestRateLimitErrors:
    """Tests for the rate-limit exception hierarchy."""

    def test_client_side_errors_are_not_retryable(self):
        error = RateLimitWouldBeExceededError("default", required_wait=1.5)

        assert isinstance(error, ClientSideRateLimitError)
        assert isinstance(error, RateLimitError)
        assert not isinstance(error, RetryableError)
        assert error.bucket_key == "default"
        assert error.required_wait == 1.5

    def test_timeout_error_message(self):
        error = TokenAcquisitionTimeoutError("default", required_wait=100.0, max_wait_time=60.0)

        assert "100.00s" in str(error)
        assert "60.00s" in str(error)
        assert error.max_wait_time == 60.0

    def test_server_side_error_is_retryable(self):
        response = make_response(403, headers={"X-Rate-Limit-Remaining": "0"})
        error = ServerSideRateLimitError(response, bucket_key="k")

        assert isinstance(error, RetryableError)
        assert isinstance(error, RateLimitError)
        assert error.status_code == 403
        assert error.response is response


# =============================================================================
# RateLimitMiddleware
# =============================================================================


class TestBucketKeys:
    """Tests for bucket key derivation."""

    def test_host_and_credential_fingerprint(self):
        middleware = make_middleware(auth=ApiKeyAuthProvider("1~key-a"))

        key = middleware.bucket_key_for(HttpRequest("GET", URL))

        assert key == f"{HOST}_{fingerprint('1~key-a')}"
        assert "1~key-a" not in key

    def test_explicit_override_wins(self):
        middleware = make_middleware()

        request = HttpRequest("GET", URL, options={"rate_limit_bucket": "uploads"})

        assert middleware.bucket_key_for(request) == "uploads"

    def test_missing_credential_uses_default_bucket(self):
        middleware = make_middleware(auth=ApiKeyAuthProvider(None))

        assert middleware.bucket_key_for(HttpRequest("GET", URL)) == DEFAULT_BUCKET_KEY

    def test_no_auth_uses_default_bucket(self):
        middleware = RateLimitMiddleware(config=RateLimitConfig(), registry=BucketRegistry())

        assert middleware.bucket_key_for(HttpRequest("GET", URL)) == DEFAULT_BUCKET_KEY


class TestRateLimitMiddleware:
    """Tests for pre-request charging and post-request reconciliation."""

    def test_reported_remaining_overrides_estimate(self):
        middleware = make_middleware()
        transport = StubTransport(make_response(headers={"X-Rate-Limit-Remaining": "2900.5", "X-Request-Cost": "99.5"}))
        request = HttpRequest("GET", URL)

        middleware.wrap(transport.send)(request)

        bucket = middleware.get_bucket(middleware.bucket_key_for(request))
        assert bucket.remaining == 2900.5

    def test_lower_actual_cost_is_refunded(self):
        middleware = make_middleware(initial_cost=50)
        transport = StubTransport(make_response(headers={"X-Request-Cost": "10"}))
        request = HttpRequest("GET", URL)

        middleware.wrap(transport.send)(request)

        assert middleware.get_bucket(middleware.bucket_key_for(request)).remaining == 2990

    def test_higher_actual_cost_is_charged(self):
        middleware = make_middleware(initial_cost=50)
        transport = StubTransport(make_response(headers={"X-Request-Cost": "80"}))
        request = HttpRequest("GET", URL)

        middleware.wrap(transport.send)(request)

        assert middleware.get_bucket(middleware.bucket_key_for(request)).remaining == 2920

    def test_estimate_is_kept_without_headers(self):
        middleware = make_middleware(initial_cost=50)
        transport = StubTransport(make_response())
        request = HttpRequest("GET", URL)
        send = middleware.wrap(transport.send)

        for _ in range(3):
            send(request)

        assert middleware.get_bucket(middleware.bucket_key_for(request)).remaining == 2850

    def test_pre_charges_before_sending(self):
        middleware = make_middleware(initial_cost=50)
        request = HttpRequest("GET", URL)
        seen = []

        def send(req):
            seen.append(middleware.get_bucket(middleware.bucket_key_for(req)).remaining)
            return make_response()

        middleware.wrap(send)(request)

        assert seen == [2950]

    @patch("canvaslms._rate_limit.time.sleep")
    def test_waits_until_min_remaining(self, mock_sleep: MagicMock):
        middleware = make_middleware(min_remaining=100, leak_rate=50, initial_cost=50)
        transport = StubTransport(make_response())
        request = HttpRequest("GET", URL)
        middleware.get_bucket(middleware.bucket_key_for(request)).remaining = 50

        response = middleware.wrap(transport.send)(request)

        assert response.status_code == 200
        mock_sleep.assert_called_once()
        assert mock_sleep.call_args[0][0] == pytest.approx(1.0)
        assert transport.call_count == 1

    @patch("canvaslms._rate_limit.time.sleep")
    def test_wait_warning_reports_remaining_seen_when_deciding(self, mock_sleep: MagicMock, caplog):
        middleware = make_middleware(min_remaining=100, leak_rate=50, initial_cost=50)
        request = HttpRequest("GET", URL)
        middleware.get_bucket(middleware.bucket_key_for(request)).remaining = 50

        with caplog.at_level("WARNING", logger="canvaslms._rate_limit"):
            middleware.wrap(StubTransport(make_response()).send)(request)

        assert "(50 < 100)" in caplog.text
        assert "Waiting 1.00s" in caplog.text

    @patch("canvaslms._rate_limit.time.sleep")
    def test_leak_since_last_update_avoids_waiting(self, mock_sleep: MagicMock):
        clock = FakeClock()
        middleware = make_middleware(clock=clock, min_remaining=100, leak_rate=50)
        transport = StubTransport(make_response())
        request = HttpRequest("GET", URL)
        middleware.get_bucket(middleware.bucket_key_for(request)).remaining = 50

        clock.advance(2.0)
        middleware.wrap(transport.send)(request)

        mock_sleep.assert_not_called()
        assert middleware.get_bucket(middleware.bucket_key_for(request)).remaining == 100

    @patch("canvaslms._rate_limit.time.sleep")
    def test_fail_fast_does_not_send(self, mock_sleep: MagicMock):
        middleware = make_middleware(wait_on_limit=False)
        transport = StubTransport(make_response())
        request = HttpRequest("GET", URL)
        middleware.get_bucket(middleware.bucket_key_for(request)).remaining = 10

        with pytest.raises(RateLimitWouldBeExceededError) as ctx:
            middleware.wrap(transport.send)(request)

        assert ctx.value.bucket_key == middleware.bucket_key_for(request)
        assert transport.call_count == 0
        mock_sleep.assert_not_called()

    @patch("canvaslms._rate_limit.time.sleep")
    def test_wait_beyond_max_wait_time_fails_immediately(self, mock_sleep: MagicMock):
        middleware = make_middleware(min_remaining=100, leak_rate=1, max_wait_time=60)
        transport = StubTransport(make_response())
        request = HttpRequest("GET", URL)
        middleware.get_bucket(middleware.bucket_key_for(request)).remaining = 0

        with pytest.raises(TokenAcquisitionTimeoutError) as ctx:
            middleware.wrap(transport.send)(request)

        assert ctx.value.required_wait == pytest.approx(100.0)
        assert transport.call_count == 0
        mock_sleep.assert_not_called()

    def test_hard_rejection_raises_server_side_error(self):
        middleware = make_middleware()
        rejection = make_response(403, text="403 Forbidden (Rate Limit Exceeded)", headers={"X-Rate-Limit-Remaining": "0.0"})
        transport = StubTransport(rejection)
        request = HttpRequest("GET", URL)

        with pytest.raises(ServerSideRateLimitError) as ctx:
            middleware.wrap(transport.send)(request)

        assert ctx.value.response is rejection
        assert ctx.value.bucket_key == middleware.bucket_key_for(request)
        assert middleware.get_bucket(middleware.bucket_key_for(request)).remaining == 0

    def test_permission_403_is_returned(self):
        middleware = make_middleware()
        forbidden = make_response(403, json_data={"errors": [{"message": "unauthorized"}]}, headers={"X-Rate-Limit-Remaining": "700"})
        transport = StubTransport(forbidden)

        assert middleware.wrap(transport.send)(HttpRequest("GET", URL)) is forbidden

    def test_transport_error_refunds_estimate(self):
        middleware = make_middleware(initial_cost=50)
        transport = StubTransport(requests.ConnectionError("refused"))
        request = HttpRequest("GET", URL)

        with pytest.raises(requests.ConnectionError):
            middleware.wrap(transport.send)(request)

        assert middleware.get_bucket(middleware.bucket_key_for(request)).remaining == 3000

    def test_disabled_is_pass_through(self):
        middleware = make_middleware(enabled=False)
        transport = StubTransport(make_response(headers={"X-Rate-Limit-Remaining": "5"}))

        middleware.wrap(transport.send)(HttpRequest("GET", URL))

        assert middleware.registry.keys() == []

    def test_reset_buckets(self):
        middleware = make_middleware()
        middleware.get_bucket("a")

        middleware.reset_buckets()

        assert middleware.registry.keys() == []


class TestBucketIsolation:
    """Tests that unrelated traffic never shares a bucket."""

    def test_different_credentials_use_independent_buckets(self):
        registry = BucketRegistry(clock=FakeClock())
        config = RateLimitConfig()
        first = RateLimitMiddleware(ApiKeyAuthProvider("1~key-a"), config, registry)
        second = RateLimitMiddleware(ApiKeyAuthProvider("1~key-b"), config, registry)
        request = HttpRequest("GET", URL)

        first.wrap(StubTransport(make_response(headers={"X-Rate-Limit-Remaining": "100"})).send)(request)
        second.wrap(StubTransport(make_response(headers={"X-Rate-Limit-Remaining": "2500"})).send)(request)

        assert first.get_bucket(first.bucket_key_for(request)).remaining == 100
        assert second.get_bucket(second.bucket_key_for(request)).remaining == 2500
        assert len(registry.keys()) == 2

    def test_different_hosts_use_independent_buckets(self):
        middleware = make_middleware()
        api_request = HttpRequest("GET", URL)
        upload_request = HttpRequest("POST", "https://instructure-uploads.s3.amazonaws.com/upload")
        send = middleware.wrap(StubTransport(make_response(headers={"X-Request-Cost": "50"})).send)

        send(api_request)
        send(api_request)
        send(upload_request)

        assert middleware.bucket_key_for(api_request) != middleware.bucket_key_for(upload_request)
        assert middleware.get_bucket(middleware.bucket_key_for(api_request)).remaining == 2900
        assert middleware.get_bucket(middleware.bucket_key_for(upload_request)).remaining == 2950

    def test_override_shares_bucket_across_hosts(self):
        middleware = make_middleware()
        send = middleware.wrap(StubTransport(make_response(headers={"X-Request-Cost": "50"})).send)

        send(HttpRequest("GET", URL, options={"rate_limit_bucket": "shared"}))
        send(HttpRequest("GET", "https://other.example.com/x", options={"rate_limit_bucket": "shared"}))

        assert middleware.registry.keys() == ["shared"]
        assert middleware.get_bucket("shared").remaining == 2900


class TestThreadSafety:
    """Tests for concurrent use of a shared bucket."""

    def test_concurrent_charges_are_all_accounted(self):
        middleware = make_middleware(initial_cost=10, bucket_size=3000, min_remaining=0)
        send = middleware.wrap(StubTransport(make_response()).send)
        request = HttpRequest("GET", URL)

        threads = [threading.Thread(target=send, args=(request,)) for _ in range(50)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert middleware.get_bucket(middleware.bucket_key_for(request)).remaining == 2500
