import asyncio
import itertools
import uuid

import pytest

from annotation_relay.presentation import LoopContext
from annotation_relay.protocol import encode_message
from annotation_relay.protocol.messages import AnnotationBodyChunk, ReassemblyKey
from annotation_relay.reassembly import DuplicatePolicy, ReassemblyEngine
from annotation_relay.splitter import split_annotation


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def received():
    return []


@pytest.fixture
def local_id():
    return uuid.uuid4()


@pytest.fixture
def engine(local_id, received):
    return ReassemblyEngine(local_id, received.append)


def _deliver(engine, split, order=None):
    engine.on_message(split.header)
    chunks = split.chunks if order is None else [split.chunks[i] for i in order]
    for chunk in chunks:
        engine.on_message(chunk)


# --- basic paths --- #


def test_single_message_emits_without_state(engine, received, make_points, sender_a):
    points = make_points(4)
    split = split_annotation(points, sender_a)

    assert engine.on_message(split.single) == points
    assert received == [points]
    assert engine.slots == {}


def test_multi_chunk_round_trip(engine, received, make_points, sender_a):
    points = make_points(10)
    split = split_annotation(points, sender_a)

    _deliver(engine, split)

    assert received == [points]


def test_on_text_round_trip_through_codec(engine, received, make_points, sender_a):
    points = make_points(25)
    split = split_annotation(points, sender_a)

    results = [engine.on_text(encode_message(m)) for m in split.messages()]

    assert results[:-1] == [None] * (len(results) - 1)
    assert results[-1] == points
    assert received == [points]


def test_header_opens_an_empty_slot(engine, make_points, sender_a):
    split = split_annotation(make_points(20), sender_a)

    engine.on_message(split.header)

    key = ReassemblyKey(split.annotation_id, split.header.totalChunksCount)
    assert key in engine.slots
    assert engine.slots[key].chunks == []
    assert engine.open_slots == 1


def test_repeated_header_is_idempotent(engine, make_points, sender_a):
    split = split_annotation(make_points(20), sender_a)
    engine.on_message(split.header)
    engine.on_message(split.chunks[0])

    engine.on_message(split.header)

    slot = engine.pending(split.annotation_id)
    assert len(slot.chunks) == 1
    assert len(engine.slots) == 1


def test_header_with_other_count_does_not_open_second_slot(engine, make_points, sender_a):
    split = split_annotation(make_points(20), sender_a)
    engine.on_message(split.header)

    other = split.header.model_copy(update={"totalChunksCount": 7})
    engine.on_message(other)

    assert list(engine.slots) == [ReassemblyKey(split.annotation_id, split.header.totalChunksCount)]


def test_unrelated_text_is_ignored(engine, received):
    assert engine.on_text('{"t":"error","reason":"too_large"}') is None
    assert engine.on_text("hello") is None
    assert received == []
    assert engine.slots == {}


# --- loopback --- #


def test_loopback_is_suppressed_for_every_shape(engine, received, local_id, make_points):
    single = split_annotation(make_points(2), local_id)
    chunked = split_annotation(make_points(20), local_id)

    engine.on_message(single.single)
    _deliver(engine, chunked)

    assert received == []
    assert engine.slots == {}


def test_loopback_chunk_does_not_touch_a_remote_slot(engine, received, local_id, make_points, sender_a):
    split = split_annotation(make_points(20), sender_a)
    engine.on_message(split.header)

    forged = split.chunks[0].model_copy(update={"senderID": local_id})
    engine.on_message(forged)

    assert engine.pending(split.annotation_id).chunks == []


# --- ordering --- #


def test_any_chunk_permutation_reassembles_in_position_order(local_id, make_points, sender_a):
    points = make_points(20)
    split = split_annotation(points, sender_a)
    assert len(split.chunks) == 3

    for order in itertools.permutations(range(3)):
        received = []
        engine = ReassemblyEngine(local_id, received.append)
        _deliver(engine, split, order)
        assert received == [points], order


def test_chunk_before_header_is_dropped(engine, received, make_points, sender_a):
    split = split_annotation(make_points(20), sender_a)
    first, second, third = split.chunks

    engine.on_message(third)
    engine.on_message(split.header)
    engine.on_message(first)
    engine.on_message(second)

    assert received == []
    slot = engine.pending(split.annotation_id)
    assert [c.position for c in slot.chunks] == [1, 2]
    assert not slot.completed


def test_concurrent_senders_do_not_mix(engine, received, make_points, sender_a, sender_b):
    pts_a = make_points(20)
    pts_b = list(reversed(make_points(17)))
    split_a = split_annotation(pts_a, sender_a)
    split_b = split_annotation(pts_b, sender_b)

    engine.on_message(split_a.header)
    engine.on_message(split_b.header)
    for ca, cb in itertools.zip_longest(split_a.chunks, reversed(split_b.chunks)):
        if cb is not None:
            engine.on_message(cb)
        if ca is not None:
            engine.on_message(ca)

    assert len(received) == 2
    assert pts_a in received
    assert pts_b in received


def test_completed_annotation_emits_exactly_once(engine, received, make_points, sender_a):
    points = make_points(10)
    split = split_annotation(points, sender_a)
    _deliver(engine, split)

    engine.on_message(split.header)
    for chunk in split.chunks:
        engine.on_message(chunk)

    assert received == [points]
    assert engine.pending(split.annotation_id).completed
    assert engine.open_slots == 0


# --- duplicate positions --- #


def test_duplicates_are_appended_by_default(engine, received, make_points, sender_a):
    points = make_points(10)
    split = split_annotation(points, sender_a)
    first = split.chunks[0]

    engine.on_message(split.header)
    engine.on_message(first)
    engine.on_message(first)

    assert received == [first.points + first.points]


def test_ignore_policy_drops_repeats(local_id, received, make_points, sender_a):
    engine = ReassemblyEngine(local_id, received.append, duplicate_policy=DuplicatePolicy.IGNORE)
    points = make_points(10)
    split = split_annotation(points, sender_a)

    engine.on_message(split.header)
    engine.on_message(split.chunks[0])
    engine.on_message(split.chunks[0])
    assert received == []

    engine.on_message(split.chunks[1])
    assert received == [points]


def test_replace_policy_keeps_latest_copy(local_id, received, make_points, sender_a):
    engine = ReassemblyEngine(local_id, received.append, duplicate_policy="replace")
    points = make_points(10)
    split = split_annotation(points, sender_a)
    retransmit = AnnotationBodyChunk(
        annotationID=split.annotation_id,
        senderID=sender_a,
        position=1,
        points=make_points(2),
    )

    engine.on_message(split.header)
    engine.on_message(split.chunks[0])
    engine.on_message(retransmit)
    engine.on_message(split.chunks[1])

    assert received == [make_points(2) + points[7:]]


# --- eviction --- #


def test_ttl_evicts_stale_slots(local_id, received, make_points, sender_a):
    clock = FakeClock()
    engine = ReassemblyEngine(local_id, received.append, clock=clock, slot_ttl_s=10.0)
    split = split_annotation(make_points(10), sender_a)

    engine.on_message(split.header)
    engine.on_message(split.chunks[0])
    clock.now = 11.0
    engine.on_message(split.chunks[1])

    assert received == []
    assert engine.pending(split.annotation_id) is None


def test_sweep_reports_evictions(local_id, received, make_points, sender_a):
    clock = FakeClock()
    engine = ReassemblyEngine(local_id, received.append, clock=clock, slot_ttl_s=5.0)
    engine.on_message(split_annotation(make_points(10), sender_a).header)
    engine.on_message(split_annotation(make_points(10), sender_a).header)

    assert engine.sweep(4.0) == 0
    assert engine.sweep(6.0) == 2
    assert engine.slots == {}


def test_without_ttl_slots_stay_resident(engine, make_points, sender_a):
    split = split_annotation(make_points(10), sender_a)
    engine.on_message(split.header)
    assert engine.sweep(1e9) == 0
    assert engine.pending(split.annotation_id) is not None


def test_slot_cap_evicts_oldest(local_id, received, make_points, sender_a):
    engine = ReassemblyEngine(local_id, received.append, max_slots=2)
    splits = [split_annotation(make_points(10), sender_a) for _ in range(3)]
    for s in splits:
        engine.on_message(s.header)

    assert engine.pending(splits[0].annotation_id) is None
    assert len(engine.slots) == 2

    for chunk in splits[0].chunks:
        engine.on_message(chunk)
    assert received == []


def test_slot_cap_evicts_completed_before_in_flight(local_id, received, make_points, sender_a, sender_b):
    engine = ReassemblyEngine(local_id, received.append, max_slots=2)
    in_flight = split_annotation(make_points(10), sender_a)
    done = split_annotation(make_points(12), sender_b)
    newest = split_annotation(make_points(14), sender_b)

    engine.on_message(in_flight.header)
    engine.on_message(in_flight.chunks[0])
    _deliver(engine, done)
    engine.on_message(newest.header)

    assert engine.pending(done.annotation_id) is None
    assert engine.pending(in_flight.annotation_id) is not None
    assert engine.open_slots == 2

    engine.on_message(in_flight.chunks[1])
    assert received == [make_points(12), make_points(10)]


def test_orphans_are_capped_like_slots(local_id, received, make_points, sender_a):
    engine = ReassemblyEngine(local_id, received.append, clock=FakeClock(), max_slots=2, orphan_grace_s=5.0)
    splits = [split_annotation(make_points(10), sender_a) for _ in range(3)]

    for s in splits:
        engine.on_message(s.chunks[1])
    for s in splits:
        engine.on_message(s.header)
        engine.on_message(s.chunks[0])

    assert received == [make_points(10), make_points(10)]
    assert len(engine.pending(splits[0].annotation_id).chunks) == 1


# --- orphan buffering --- #


def test_orphans_are_replayed_when_header_arrives(local_id, received, make_points, sender_a):
    clock = FakeClock()
    engine = ReassemblyEngine(local_id, received.append, clock=clock, orphan_grace_s=5.0)
    points = make_points(10)
    split = split_annotation(points, sender_a)

    engine.on_message(split.chunks[1])
    clock.now = 1.0
    engine.on_message(split.header)
    engine.on_message(split.chunks[0])

    assert received == [points]


def test_orphans_complete_on_header(local_id, received, make_points, sender_a):
    engine = ReassemblyEngine(local_id, received.append, clock=FakeClock(), orphan_grace_s=5.0)
    points = make_points(10)
    split = split_annotation(points, sender_a)

    for chunk in split.chunks:
        engine.on_message(chunk)

    assert engine.on_message(split.header) == points


def test_expired_orphans_are_discarded(local_id, received, make_points, sender_a):
    clock = FakeClock()
    engine = ReassemblyEngine(local_id, received.append, clock=clock, orphan_grace_s=5.0)
    split = split_annotation(make_points(10), sender_a)

    engine.on_message(split.chunks[1])
    clock.now = 10.0
    engine.on_message(split.header)
    engine.on_message(split.chunks[0])

    assert received == []
    assert len(engine.pending(split.annotation_id).chunks) == 1


# --- configuration --- #


@pytest.mark.parametrize(
    "kwargs",
    [{"slot_ttl_s": 0}, {"max_slots": 0}, {"orphan_grace_s": -1.0}],
)
def test_invalid_bounds_raise(local_id, kwargs):
    with pytest.raises(ValueError):
        ReassemblyEngine(local_id, lambda _: None, **kwargs)


# --- presentation hand-off --- #


@pytest.mark.anyio
async def test_loop_context_defers_emission(local_id, received, make_points, sender_a):
    engine = ReassemblyEngine(local_id, received.append, context=LoopContext(asyncio.get_running_loop()))
    points = make_points(3)

    engine.on_message(split_annotation(points, sender_a).single)
    assert received == []

    await asyncio.sleep(0)
    assert received == [points]
