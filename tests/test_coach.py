import json
from datetime import date
from urllib.error import URLError

import pytest

import coach
from coach import CoachClient, CoachSession, CoachUnavailable
from periods import DateRange
from snapshot import AnalysisEngine

JUNE = DateRange("2024-06-01", "2024-06-30")


def _snapshot(amount: float = 40.0):
    records = [{"id": 1, "merchantName": "Deli", "date": "2024-06-10", "totalAmount": amount, "category": "Food"}]
    return AnalysisEngine(cache_size=0).analyze(records, JUNE, today=date(2024, 7, 1))


class FakeClient:
    def __init__(self, message: str = "Looking good.", during=None) -> None:
        self.message = message
        self.during = during
        self.calls = 0

    def ask(self, snapshot, conversation=()):
        self.calls += 1
        if self.during is not None:
            self.during()
        return self.message


def test_unread_flag_rises_only_while_closed() -> None:
    session = CoachSession()
    first, second = _snapshot(40), _snapshot(50)

    session.observe(first)
    assert not session.unread

    session.observe(second)
    assert session.unread

    session.open()
    assert not session.unread
    session.observe(first)
    assert not session.unread

    session.close()
    session.observe(first)
    assert not session.unread
    assert session.state()["signature"] == first.signature


def test_request_returns_message() -> None:
    session = CoachSession()
    snap = _snapshot()
    client = FakeClient("Food is steady.")
    assert session.request_insights(snap, client) == "Food is steady."
    assert session.last_message == "Food is steady."
    assert not session.in_flight


def test_second_request_is_suppressed_while_in_flight() -> None:
    session = CoachSession()
    snap = _snapshot()
    nested: list = []
    client = FakeClient(during=lambda: nested.append(session.request_insights(snap, FakeClient())))

    assert session.request_insights(snap, client) == "Looking good."
    assert nested == [None]
    assert client.calls == 1


def test_stale_response_is_discarded() -> None:
    session = CoachSession()
    old, new = _snapshot(40), _snapshot(55)
    client = FakeClient(during=lambda: session.observe(new))

    assert session.request_insights(old, client) is None
    assert session.last_message is None
    assert not session.in_flight


def test_failure_clears_in_flight() -> None:
    session = CoachSession()

    class Broken:
        def ask(self, snapshot, conversation=()):
            raise CoachUnavailable("down")

    with pytest.raises(CoachUnavailable):
        session.request_insights(_snapshot(), Broken())
    assert not session.in_flight


class _Response:
    def __init__(self, body: bytes) -> None:
        self.body = body

    def read(self) -> bytes:
        return self.body

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        return None


def test_client_posts_analysis_and_conversation(monkeypatch) -> None:
    seen = {}

    def fake_urlopen(req, timeout):
        seen["payload"] = json.loads(req.data.decode("utf-8"))
        seen["method"] = req.get_method()
        seen["timeout"] = timeout
        return _Response(b'{"message": " Nice trim on Food. "}')

    monkeypatch.setattr(coach, "urlopen", fake_urlopen)
    client = CoachClient("http://coach.local/api", timeout=5)
    message = client.ask(_snapshot(), [{"role": "user", "content": "How am I doing?"}])

    assert message == "Nice trim on Food."
    assert seen["method"] == "POST"
    assert seen["timeout"] == 5
    assert seen["payload"]["conversation"][0]["content"] == "How am I doing?"
    assert seen["payload"]["analysis"]["totals"]["spending"] == 40.0


def test_client_wraps_transport_errors(monkeypatch) -> None:
    def refuse(req, timeout):
        raise URLError("connection refused")

    monkeypatch.setattr(coach, "urlopen", refuse)
    with pytest.raises(CoachUnavailable):
        CoachClient("http://coach.local/api").ask(_snapshot())

    monkeypatch.setattr(coach, "urlopen", lambda req, timeout: _Response(b'{"nope": 1}'))
    with pytest.raises(CoachUnavailable):
        CoachClient("http://coach.local/api").ask(_snapshot())


def test_switching_ranges_does_not_raise_unread() -> None:
    session = CoachSession()
    records = [{"id": 1, "merchantName": "Deli", "date": "2024-06-10", "totalAmount": 40, "category": "Food"}]
    engine = AnalysisEngine(cache_size=0)
    june = engine.analyze(records, JUNE, today=date(2024, 7, 1))
    may = engine.analyze(records, DateRange("2024-05-01", "2024-05-31"), today=date(2024, 7, 1))

    session.observe(june)
    session.observe(may)
    session.observe(june)
    assert not session.unread
    assert session.signature == june.signature


def test_other_range_does_not_make_reply_stale() -> None:
    session = CoachSession()
    june = _snapshot(40)
    may = AnalysisEngine(cache_size=0).analyze(
        [], DateRange("2024-05-01", "2024-05-31"), today=date(2024, 7, 1)
    )
    client = FakeClient("June looks fine.", during=lambda: session.observe(may))

    assert session.request_insights(june, client) == "June looks fine."
