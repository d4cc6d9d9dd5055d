import uuid

import pytest

from annotation_relay.protocol.messages import StrokePoint
from annotation_relay.transport import SignalTransport, TransportError


@pytest.fixture
def anyio_backend():
    return "asyncio"


def make_point(i: int) -> StrokePoint:
    return StrokePoint(
        location=[10.0 + i, 20.5 + i * 0.25],
        timeOffset=i * 0.016,
        size=[4.0, 4.5],
        opacity=1.0,
        force=0.5 + i * 0.001,
        azimuth=0.1,
        altitude=1.2,
        secondaryScale=1.0,
    )


@pytest.fixture
def make_points():
    def _make(n: int) -> list[StrokePoint]:
        return [make_point(i) for i in range(n)]

    return _make


@pytest.fixture
def sender_a():
    return uuid.uuid4()


@pytest.fixture
def sender_b():
    return uuid.uuid4()


class RecordingTransport(SignalTransport):
    """In-memory transport: remembers what was sent, replays a fixed inbound list."""

    def __init__(self, inbound=(), *, fail_after=None, fail_inbound=False):
        self.sent: list[str] = []
        self.inbound = list(inbound)
        self.fail_after = fail_after
        self.fail_inbound = fail_inbound
        self.closed = False

    async def send(self, text: str) -> None:
        self.check_size(text)
        if self.fail_after is not None and len(self.sent) >= self.fail_after:
            raise TransportError("channel unavailable")
        self.sent.append(text)

    async def messages(self):
        for text in self.inbound:
            yield text
        if self.fail_inbound:
            raise TransportError("connection closed: 1006")

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def transport_factory():
    return RecordingTransport
