"""Tests for the remote write client."""

import threading
import time
from datetime import timedelta

import pytest
import requests
from prometheus_client import CollectorRegistry

from conftest import MockSpeedtest, wait_for
from speedtest_exporter.cache import ResultCache
from speedtest_exporter.collector import SpeedtestCollector
from speedtest_exporter import remote
from speedtest_exporter.errors import (
    ClientAlreadyRunningError,
    MissingAuthCredentialsError,
    MissingEndpointError,
    MissingRegistryError,
)
from speedtest_exporter.remote import RemoteWriteClient


class FakeResponse:
    def __init__(self, status_code=200):
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error")


class RecordingSession:
    """Replaces the requests session request call."""

    def __init__(self, status_code=200, error=None):
        self.status_code = status_code
        self.error = error
        self.requests = []
        self._lock = threading.Lock()

    def request(self, method, url, data=None, headers=None, timeout=None):
        with self._lock:
            self.requests.append(
                {"method": method, "url": url, "data": data, "headers": headers, "timeout": timeout}
            )
        if self.error is not None:
            raise self.error
        return FakeResponse(self.status_code)

    @property
    def count(self):
        with self._lock:
            return len(self.requests)


@pytest.fixture
def registry():
    reg = CollectorRegistry()
    reg.register(
        SpeedtestCollector(ResultCache(False, None, timedelta(minutes=5)), MockSpeedtest(), "testinstance")
    )
    return reg


@pytest.fixture
def client(registry):
    rw_client = RemoteWriteClient("https://example.org/", registry, instance="test", job="speedtest")
    yield rw_client
    rw_client.stop()


def install_session(rw_client, monkeypatch, **kwargs):
    session = RecordingSession(**kwargs)
    monkeypatch.setattr(rw_client.session, "request", session.request)
    return session


def test_requires_endpoint(registry):
    with pytest.raises(MissingEndpointError):
        RemoteWriteClient("", registry)


def test_requires_registry():
    with pytest.raises(MissingRegistryError):
        RemoteWriteClient("https://example.org", None)


@pytest.mark.parametrize("username, password", [("user", None), (None, "secret"), ("", "secret")])
def test_requires_complete_credentials(registry, username, password):
    with pytest.raises(MissingAuthCredentialsError):
        RemoteWriteClient("https://example.org", registry, username=username, password=password)


def test_basic_auth(registry):
    rw_client = RemoteWriteClient("https://example.org", registry, username="user", password="secret")
    assert rw_client.session.auth == ("user", "secret")


def test_instance_defaults_to_hostname(registry, monkeypatch):
    monkeypatch.setattr(remote, "get_hostname", lambda: "myhost")
    rw_client = RemoteWriteClient("https://example.org", registry)

    assert rw_client.instance == "myhost"
    assert rw_client.job == "speedtest-exporter"
    assert rw_client.registry is registry


def test_push_url_contains_grouping_key(client, monkeypatch):
    session = install_session(client, monkeypatch)

    client.push()

    assert session.requests[0]["method"] == "PUT"
    assert session.requests[0]["url"] == "https://example.org/metrics/job/speedtest/instance/test"


@pytest.mark.parametrize(
    "instance, suffix",
    [
        ("a/b", "instance@base64/YS9i"),
        ("a b", "instance/a+b"),
    ],
)
def test_push_url_escapes_grouping_key(registry, monkeypatch, instance, suffix):
    rw_client = RemoteWriteClient("https://example.org", registry, instance=instance, job="job")
    session = install_session(rw_client, monkeypatch)

    rw_client.push()

    assert session.requests[0]["url"] == f"https://example.org/metrics/job/job/{suffix}"


def test_collect_returns_text_exposition(client):
    payload = client.collect()

    assert b"# TYPE speedtest_up gauge" in payload
    assert b"speedtest_up 1.0" in payload


def test_push_sends_metric_snapshot(client, monkeypatch):
    session = install_session(client, monkeypatch)

    client.push()

    assert session.count == 1
    sent = session.requests[0]
    assert b"speedtest_up 1.0" in sent["data"]
    assert b"speedtest_download_megabits_per_second" in sent["data"]
    assert sent["headers"]["Content-Type"].startswith("text/plain")
    assert sent["timeout"] == remote.HTTP_TIMEOUT


def test_push_raises_on_http_error(client, monkeypatch):
    install_session(client, monkeypatch, status_code=500)

    with pytest.raises(requests.HTTPError):
        client.push()


def test_tick_swallows_push_errors(client, monkeypatch):
    session = install_session(client, monkeypatch, error=requests.ConnectionError("refused"))

    client._tick()

    assert session.count == 1


def test_run_twice_fails(client, monkeypatch):
    install_session(client, monkeypatch)

    client.run(60)
    assert client.is_running()

    with pytest.raises(ClientAlreadyRunningError):
        client.run(60)
    assert client.is_running()


def test_run_pushes_immediately_and_periodically(client, monkeypatch):
    session = install_session(client, monkeypatch)

    client.run(0.05)

    assert wait_for(lambda: session.count >= 3)


def test_failures_do_not_stop_the_loop(client, monkeypatch):
    session = install_session(client, monkeypatch, status_code=503)

    client.run(0.05)

    assert wait_for(lambda: session.count >= 2)
    assert client.is_running()


def test_stop_halts_pushes(client, monkeypatch):
    session = install_session(client, monkeypatch)
    client.run(0.05)
    assert wait_for(lambda: session.count >= 1)

    client.stop()
    assert not client.is_running()

    time.sleep(0.1)
    pushed = session.count
    time.sleep(0.3)
    assert session.count == pushed


def test_stop_when_idle_is_noop(client):
    client.stop()
    assert not client.is_running()


def test_restart_after_stop(client, monkeypatch):
    session = install_session(client, monkeypatch)
    client.run(60)
    assert wait_for(lambda: session.count == 1)
    client.stop()

    client.run(60)

    assert client.is_running()
    assert wait_for(lambda: session.count == 2)
