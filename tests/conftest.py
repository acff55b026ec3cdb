import json
from datetime import datetime, timezone

import pytest

from services.sync_context import open_sync_context

# Wednesday afternoon UTC
FIXED_NOW = datetime(2026, 1, 28, 15, 30, tzinfo=timezone.utc)


class FakeResponse:
    def __init__(self, status_code=200, json_data=None, *, text=None, content=None, headers=None):
        self.status_code = status_code
        self._json = json_data
        if content is None:
            if text is not None:
                content = text.encode("utf-8")
            elif json_data is not None:
                content = json.dumps(json_data).encode("utf-8")
            else:
                content = b""
        self.content = content
        self.text = text if text is not None else content.decode("utf-8", errors="replace")
        if headers is None:
            headers = {"content-type": "application/json" if json_data is not None else "text/plain"}
        self.headers = headers

    def json(self):
        if self._json is None:
            raise ValueError("No JSON body")
        return self._json


class FakeSession:
    """
    Routes requests by (method, url fragment). Each route replays its responses
    in order and then keeps repeating the last one.
    """

    def __init__(self):
        self.calls = []
        self.closed = False
        self._routes = []

    def add(self, method, fragment, *responses):
        self._routes.append((method, fragment, list(responses)))

    def _dispatch(self, method, url, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        for route_method, fragment, responses in self._routes:
            if route_method == method and fragment in url and responses:
                resp = responses.pop(0) if len(responses) > 1 else responses[0]
                if isinstance(resp, BaseException):
                    raise resp
                if callable(resp):
                    return resp(url, **kwargs)
                return resp
        raise AssertionError(f"Unexpected {method} {url}")

    def get(self, url, **kwargs):
        return self._dispatch("GET", url, **kwargs)

    def post(self, url, **kwargs):
        return self._dispatch("POST", url, **kwargs)

    def close(self):
        self.closed = True


class FakeClock:
    def __init__(self, now=FIXED_NOW):
        self.current = now
        self.elapsed = 0.0
        self.sleeps = []

    def now(self):
        return self.current

    def monotonic(self):
        return self.elapsed

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.elapsed += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def sync_ctx(tmp_path, session, clock):
    with open_sync_context(
        tmp_path / "vendor_sync.db",
        session=session,
        spapi_host="https://sp.example/",
        marketplace_ids=["A2EUQ1WTGCTBG2"],
        lwa_client_id="client-id",
        lwa_client_secret="client-secret",
        token_url="https://lwa.example/auth/o2/token",
        now=clock.now,
        monotonic=clock.monotonic,
        sleep=clock.sleep,
    ) as ctx:
        yield ctx
