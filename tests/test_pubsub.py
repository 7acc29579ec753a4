import time
import uuid

import pytest

from minikv.commands.pubsub import publish, subscribe, unsubscribe
from minikv.config import Config
from minikv.request import Request
from minikv.resp import RedisError, array, bulk_array, bulk_string, integer
from minikv.state import AppState, ReplicationState
from minikv.store import Store


class FakeClient:
    def __init__(self):
        self.id = uuid.uuid4()
        self.sent = []

    def write(self, data):
        return len(data)

    def write_resp(self, value):
        self.sent.append(value)
        return len(value.encode())

    def remote_address(self):
        return "test:0"


@pytest.fixture
def app():
    return AppState(ReplicationState(), Config(), Store())


def make_request(app):
    return Request(client=FakeClient(), state=app)


def notice(kind, channel, count):
    return array([bulk_string(kind), bulk_string(channel), integer(count)])


def test_subscribe_counts_channels(app):
    req = make_request(app)
    try:
        subscribe(req, ["a", "b"])
        assert req.client.sent == [notice("subscribe", "a", 1), notice("subscribe", "b", 2)]
        assert req.sub_mode is True
    finally:
        app.remove_subscriber(req.client.id)


def test_subscribe_requires_channel(app):
    with pytest.raises(RedisError):
        subscribe(make_request(app), [])


def test_publish_delivers_message(app):
    subscriber = make_request(app)
    try:
        subscribe(subscriber, ["news"])
        publisher = make_request(app)
        publish(publisher, ["news", "hi"])
        assert publisher.client.sent == [integer(1)]
        expected = bulk_array(["message", "news", "hi"])
        for _ in range(200):
            if expected in subscriber.client.sent:
                break
            time.sleep(0.01)
        assert subscriber.client.sent[-1] == expected
    finally:
        app.remove_subscriber(subscriber.client.id)


def test_publish_without_subscribers(app):
    req = make_request(app)
    publish(req, ["empty", "hi"])
    assert req.client.sent == [integer(0)]


def test_publish_argument_count(app):
    with pytest.raises(RedisError):
        publish(make_request(app), ["only"])


def test_unsubscribe_without_subscription(app):
    req = make_request(app)
    unsubscribe(req, ["a"])
    assert req.client.sent == [notice("unsubscribe", "a", 0)]


def test_unsubscribe_counts_down(app):
    req = make_request(app)
    try:
        subscribe(req, ["a", "b"])
        req.client.sent.clear()
        unsubscribe(req, ["a", "b"])
        assert req.client.sent == [notice("unsubscribe", "a", 1), notice("unsubscribe", "b", 0)]
    finally:
        app.remove_subscriber(req.client.id)


def test_unsubscribe_stops_delivery(app):
    req = make_request(app)
    try:
        subscribe(req, ["a"])
        unsubscribe(req, ["a"])
        publisher = make_request(app)
        publish(publisher, ["a", "hi"])
        assert publisher.client.sent == [integer(0)]
    finally:
        app.remove_subscriber(req.client.id)


def test_unsubscribe_requires_channel(app):
    with pytest.raises(RedisError):
        unsubscribe(make_request(app), [])