import pytest

from dam_backend import config
from dam_backend.routes.core import request_json as rq


class _DummyContent:
    def __init__(self, chunks, exc=None):
        self._chunks = chunks
        self._exc = exc

    async def iter_chunked(self, _size):
        if self._exc is not None:
            raise self._exc
        for chunk in self._chunks:
            yield chunk


class _DummyRequest:
    def __init__(self, headers=None, chunks=None, exc=None):
        self.headers = headers or {}
        self.content = _DummyContent(chunks or [], exc=exc)


def test_content_length_errors() -> None:
    big = _DummyRequest(headers={"Content-Length": "999999"})
    err = rq._content_length_error(big, 2048)
    assert err is not None and err.code == "INVALID_INPUT"

    bad = _DummyRequest(headers={"Content-Length": "abc"})
    assert rq._content_length_error(bad, 2048).code == "INVALID_INPUT"

    assert rq._content_length_error(_DummyRequest(), 2048) is None


def test_decode_and_parse_json_dict() -> None:
    ok = rq._decode_and_parse_json_dict(b'{"a":1}')
    assert ok.ok and ok.data == {"a": 1}

    assert rq._decode_and_parse_json_dict(b"").data == {}
    assert rq._decode_and_parse_json_dict(b"\xff").code == "INVALID_JSON"
    assert rq._decode_and_parse_json_dict(b"{nope").code == "INVALID_JSON"
    assert rq._decode_and_parse_json_dict(b"[1, 2]").code == "INVALID_JSON"


@pytest.mark.asyncio
async def test_read_json_streams_body() -> None:
    req = _DummyRequest(chunks=[b'{"asset_ids": ', b'["a1"]}'])
    res = await rq._read_json(req)
    assert res.ok
    assert res.data == {"asset_ids": ["a1"]}


@pytest.mark.asyncio
async def test_read_json_enforces_limit(monkeypatch) -> None:
    monkeypatch.setattr(config, "MAX_JSON_BYTES", 1024)
    req = _DummyRequest(chunks=[b"x" * 800, b"x" * 800])
    res = await rq._read_json(req)
    assert not res.ok
    assert res.code == "INVALID_INPUT"
    assert res.meta.get("limit") == 1024


@pytest.mark.asyncio
async def test_read_json_reports_stream_errors() -> None:
    req = _DummyRequest(exc=RuntimeError("connection reset"))
    res = await rq._read_json(req)
    assert not res.ok
    assert res.code == "INVALID_JSON"
