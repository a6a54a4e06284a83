"""Tests for async, timeout, retry and exception-handling rules."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from codepolicy.rules import Severity, ruleset_from_mapping

if TYPE_CHECKING:
    from collections.abc import Callable

    from codepolicy.rules.base import Finding


class TestBlockingCallInAsync:
    def test_blocking_sleep(self, analyze: Callable[..., list[Finding]]) -> None:
        source = """\
        import time

        async def tick():
            time.sleep(1)
        """
        found = analyze(source, "blocking-call-in-async")
        assert len(found) == 1
        assert found[0].severity is Severity.ERROR
        assert dict(found[0].evidence)["blocking_calls"] == ("time.sleep",)

    def test_requests_in_async(self, analyze: Callable[..., list[Finding]]) -> None:
        source = """\
        import requests

        async def load(url):
            return requests.get(url, timeout=5)
        """
        assert len(analyze(source, "blocking-call-in-async")) == 1

    def test_awaited_sleep_is_fine(self, analyze: Callable[..., list[Finding]]) -> None:
        source = """\
        import asyncio

        async def tick():
            await asyncio.sleep(1)
        """
        assert analyze(source, "blocking-call-in-async") == []


class TestMissingTimeout:
    def test_network_call_without_timeout(self, analyze: Callable[..., list[Finding]]) -> None:
        source = """\
        import requests

        def fetch(url):
            return requests.get(url)
        """
        found = analyze(source, "missing-timeout")
        assert len(found) == 1
        assert dict(found[0].evidence)["calls"] == ("requests.get",)

    def test_timeout_none_does_not_count(self, analyze: Callable[..., list[Finding]]) -> None:
        source = """\
        import requests

        def fetch(url):
            return requests.get(url, timeout=None)
        """
        assert len(analyze(source, "missing-timeout")) == 1

    def test_timeout_keyword(self, analyze: Callable[..., list[Finding]]) -> None:
        source = """\
        import requests

        def fetch(url):
            return requests.get(url, timeout=(3.05, 27))
        """
        assert analyze(source, "missing-timeout") == []

    def test_client_construction_without_timeout(
        self, analyze: Callable[..., list[Finding]]
    ) -> None:
        source = """\
        import httpx

        def make_client():
            return httpx.AsyncClient(base_url="https://api.example.com")
        """
        found = analyze(source, "missing-timeout")
        assert len(found) == 1
        assert dict(found[0].evidence)["calls"] == ("httpx.AsyncClient",)


# ---------------------------------------------------------------------------
# Retry
# ---------------------------------------------------------------------------

_LOOP_NO_BACKOFF = """\
import time
import requests

def poll(url):
    while True:
        try:
            return requests.get(url, timeout=5)
        except requests.RequestException:
            time.sleep(1)
"""


class TestRetryShape:
    def test_unbounded_retry_without_backoff(
        self, analyze: Callable[..., list[Finding]]
    ) -> None:
        assert len(analyze(_LOOP_NO_BACKOFF, "unbounded-retry")) == 1
        assert len(analyze(_LOOP_NO_BACKOFF, "retry-without-backoff")) == 1

    def test_bounded_backoff_retry_is_clean(
        self, analyze: Callable[..., list[Finding]]
    ) -> None:
        source = """\
        import time
        import requests

        def fetch(url):
            for attempt in range(5):
                try:
                    return requests.get(url, timeout=5)
                except requests.RequestException:
                    time.sleep(2 ** attempt)
            return None
        """
        assert analyze(source, "unbounded-retry") == []
        assert analyze(source, "retry-without-backoff") == []

    @pytest.mark.parametrize(
        "source",
        [
            """\
            import json

            def load_records(lines):
                records = []
                for line in lines:
                    try:
                        records.append(json.loads(line))
                    except ValueError:
                        continue
                return records
            """,
            """\
            import requests

            def fetch_all(urls):
                pages = []
                for url in urls:
                    try:
                        pages.append(requests.get(url, timeout=5))
                    except requests.RequestException:
                        continue
                return pages
            """,
        ],
    )
    def test_skip_loops_are_not_retries(
        self, analyze: Callable[..., list[Finding]], source: str
    ) -> None:
        assert analyze(source, "unbounded-retry") == []
        assert analyze(source, "retry-without-backoff") == []

    def test_continue_in_infinite_network_loop(
        self, analyze: Callable[..., list[Finding]]
    ) -> None:
        source = """\
        import requests

        def poll(url):
            while True:
                try:
                    return requests.get(url, timeout=5)
                except requests.ConnectionError:
                    continue
        """
        assert len(analyze(source, "unbounded-retry")) == 1

    def test_tenacity_without_stop_is_unbounded(
        self, analyze: Callable[..., list[Finding]]
    ) -> None:
        source = """\
        from tenacity import retry, wait_exponential

        @retry(wait=wait_exponential())
        def fetch(client, url):
            return client.get(url, timeout=5)
        """
        assert len(analyze(source, "unbounded-retry")) == 1
        assert analyze(source, "retry-without-backoff") == []


_CHARGE = """\
from tenacity import retry, stop_after_attempt, wait_exponential

@retry(stop=stop_after_attempt(3), wait=wait_exponential())
def charge(client, payload{extra_param}):
{extra_body}    return client.post("/charges", json=payload{extra_kw}, timeout=10)
"""


def _charge(extra_param: str = "", extra_body: str = "", extra_kw: str = "") -> str:
    return _CHARGE.format(extra_param=extra_param, extra_body=extra_body, extra_kw=extra_kw)


class TestRetryNonIdempotent:
    def test_post_retry_without_marker(self, analyze: Callable[..., list[Finding]]) -> None:
        found = analyze(_charge(), "retry-non-idempotent")
        assert len(found) == 1
        assert found[0].severity is Severity.ERROR
        assert found[0].callable == "charge"

    def test_identifier_marker(self, analyze: Callable[..., list[Finding]]) -> None:
        source = _charge(extra_param=", idempotency_key")
        assert analyze(source, "retry-non-idempotent") == []

    def test_header_marker(self, analyze: Callable[..., list[Finding]]) -> None:
        source = _charge(
            extra_param=", request_id",
            extra_body='    headers = {"Idempotency-Key": request_id}\n',
            extra_kw=", headers=headers",
        )
        assert analyze(source, "retry-non-idempotent") == []

    def test_header_marker_can_be_rejected(
        self, analyze: Callable[..., list[Finding]]
    ) -> None:
        ruleset = ruleset_from_mapping({
            "version": 1,
            "rules": {"retry-non-idempotent": {"toggles": {"header_marker": False}}},
        })
        source = _charge(
            extra_param=", request_id",
            extra_body='    headers = {"Idempotency-Key": request_id}\n',
            extra_kw=", headers=headers",
        )
        assert len(analyze(source, "retry-non-idempotent", ruleset=ruleset)) == 1

    def test_get_retry_is_fine(self, analyze: Callable[..., list[Finding]]) -> None:
        source = _charge().replace("client.post", "client.get")
        assert analyze(source, "retry-non-idempotent") == []

    def test_post_without_retry_is_fine(self, analyze: Callable[..., list[Finding]]) -> None:
        source = """\
        def charge(client, payload):
            return client.post("/charges", json=payload, timeout=10)
        """
        assert analyze(source, "retry-non-idempotent") == []


_SESSION = """\
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

def build_session(session):
    retry = Retry(total=3, backoff_factor=0.5, status_forcelist={statuses})
    session.mount("https://", HTTPAdapter(max_retries=retry))
    return session
"""


class TestRetryNonTransientStatus:
    def test_404_in_retry_set(self, analyze: Callable[..., list[Finding]]) -> None:
        found = analyze(_SESSION.format(statuses="[404, 429, 503]"), "retry-non-transient-status")
        assert len(found) == 1
        assert found[0].severity is Severity.ERROR
        assert dict(found[0].evidence)["non_transient"] == (404,)

    def test_transient_only_set(self, analyze: Callable[..., list[Finding]]) -> None:
        source = _SESSION.format(statuses="[429, 502, 503, 504]")
        assert analyze(source, "retry-non-transient-status") == []

    def test_loop_with_status_constant(self, analyze: Callable[..., list[Finding]]) -> None:
        source = """\
        import time
        import requests

        RETRY_STATUSES = {401, 503}

        def fetch(url):
            for attempt in range(3):
                response = requests.get(url, timeout=5)
                if response.status_code not in RETRY_STATUSES:
                    return response
                time.sleep(2 ** attempt)
            return None
        """
        found = analyze(source, "retry-non-transient-status")
        assert len(found) == 1
        assert dict(found[0].evidence)["non_transient"] == (401,)


class TestSwallowedException:
    def test_pass_handler(self, analyze: Callable[..., list[Finding]]) -> None:
        source = """\
        def load(path):
            try:
                return open(path).read()
            except OSError:
                pass
            return ""
        """
        found = analyze(source, "swallowed-exception")
        assert len(found) == 1
        assert found[0].line == 4
        assert dict(found[0].evidence)["caught"] == ("OSError",)

    def test_one_finding_per_handler(self, analyze: Callable[..., list[Finding]]) -> None:
        source = """\
        def quiet(fn):
            try:
                fn()
            except ValueError:
                pass
            try:
                fn()
            except Exception:
                ...
        """
        found = analyze(source, "swallowed-exception")
        assert [f.line for f in found] == [4, 8]

    def test_logged_handler_is_not_swallowed_by_default(
        self, analyze: Callable[..., list[Finding]]
    ) -> None:
        source = """\
        import logging

        logger = logging.getLogger(__name__)

        def quiet(fn):
            try:
                fn()
            except ValueError:
                logger.exception("fn failed")
        """
        assert analyze(source, "swallowed-exception") == []
        strict = ruleset_from_mapping({
            "version": 1,
            "rules": {"swallowed-exception": {"toggles": {"logged_counts_as_swallowed": True}}},
        })
        assert len(analyze(source, "swallowed-exception", ruleset=strict)) == 1

    def test_reraise_is_fine(self, analyze: Callable[..., list[Finding]]) -> None:
        source = """\
        def strict(fn):
            try:
                fn()
            except ValueError as exc:
                raise RuntimeError("bad") from exc
        """
        assert analyze(source, "swallowed-exception") == []
