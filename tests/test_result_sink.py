import math
from queue import Queue

from face_gate.matcher import MatchResult
from face_gate.result_sink import QueueResultSink, put_latest


def test_put_latest_drops_oldest_when_full():
    q: Queue = Queue(maxsize=2)
    for item in (1, 2, 3):
        put_latest(q, item)

    assert [q.get_nowait(), q.get_nowait()] == [2, 3]


def test_sink_drains_in_publish_order():
    sink = QueueResultSink(maxsize=8)
    sink.publish(MatchResult(identity="alice", distance=0.1, confidence=90))
    sink.publish("ticket-7")

    events = sink.drain()

    assert [e.kind for e in events] == ["face", "qr"]
    assert events[0].to_dict()["label"] == "alice"
    assert events[1].to_dict()["text"] == "ticket-7"
    assert sink.drain() == []


def test_sink_keeps_latest_event():
    sink = QueueResultSink(maxsize=1)
    sink.publish("first")
    sink.publish(MatchResult(identity=None, distance=math.inf, confidence=0))

    assert sink.latest.to_dict()["label"] == "unknown"
    assert len(sink.drain(limit=5)) == 1


def test_get_times_out_empty():
    assert QueueResultSink().get(timeout=0.01) is None
