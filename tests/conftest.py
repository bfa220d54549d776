import json
import threading
import time

import pytest
import requests

from gitlab_tokens_exporter.config import Config
from gitlab_tokens_exporter.gitlab import GitlabClient

HOSTNAME = "gitlab.example.com"
BASE_URL = f"https://{HOSTNAME}/api/v4"


def make_response(url, body, status=200, next_url=None):
    response = requests.Response()
    response.url = url
    response.status_code = status
    response.reason = "OK" if status < 400 else "Error"
    response.headers["Content-Type"] = "application/json"
    if next_url:
        response.headers["Link"] = f'<{next_url}>; rel="next", <{url}>; rel="first"'
    response._content = body.encode() if isinstance(body, str) else json.dumps(body).encode()
    return response


class FakeSession(requests.Session):
    """Serves canned GitLab answers and records what was asked."""

    def __init__(self, delay=0):
        super().__init__()
        self.routes = {}
        self.calls = []
        self.delay = delay
        self.in_flight = 0
        self.peak = 0
        self._lock = threading.Lock()

    def add(self, path, body, status=200, next_path=None):
        url = path if path.startswith("https://") else f"{BASE_URL}/{path}"
        next_url = None
        if next_path:
            next_url = next_path if next_path.startswith("https://") else f"{BASE_URL}/{next_path}"
        self.routes[url] = lambda params: make_response(url, body, status, next_url)

    def add_handler(self, path, handler):
        self.routes[f"{BASE_URL}/{path}"] = handler

    def requested(self, path):
        url = f"{BASE_URL}/{path}"
        return [params for called_url, params in self.calls if called_url == url]

    def get(self, url, params=None, timeout=None, **kwargs):
        with self._lock:
            self.calls.append((url, params))
            self.in_flight += 1
            self.peak = max(self.peak, self.in_flight)
        try:
            if self.delay:
                time.sleep(self.delay)
            handler = self.routes.get(url)
            if handler is None:
                return make_response(url, {"message": "404 Not found"}, status=404)
            result = handler(params)
            if isinstance(result, Exception):
                raise result
            return result
        finally:
            with self._lock:
                self.in_flight -= 1


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def client(session):
    return GitlabClient(HOSTNAME, "glpat-secret", max_concurrent_requests=4, session=session)


@pytest.fixture
def config():
    return Config(hostname=HOSTNAME, token="glpat-secret", max_concurrent_requests=4)
