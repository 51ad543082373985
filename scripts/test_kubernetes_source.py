import asyncio
import json
import sys
from pathlib import Path

import httpx
import pytest

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from fake_source import pipelinerun  # noqa: E402
from prstatus.exceptions import NotFoundError, TransientSourceError  # noqa: E402
from prstatus.pipelineruns.models import EntityIdentity, WatchEventType  # noqa: E402
from prstatus.pipelineruns.source import KubernetesEntitySource  # noqa: E402

API = "https://kube.test"


def _source(handler, tmp_path=None, token="sa-token"):
    token_path = None
    if tmp_path is not None:
        token_file = tmp_path / "token"
        token_file.write_text(token + "\n")
        token_path = str(token_file)
    client = httpx.AsyncClient(base_url=API, transport=httpx.MockTransport(handler))
    return KubernetesEntitySource(API, token_path=token_path, client=client)


def test_get_returns_object_and_sends_token(tmp_path):
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["auth"] = request.headers.get("authorization")
        return httpx.Response(200, json=pipelinerun("a"))

    obj = asyncio.run(_source(handler, tmp_path).get(EntityIdentity("builds", "a")))

    assert obj["metadata"]["name"] == "a"
    assert seen["path"] == "/apis/tekton.dev/v1/namespaces/builds/pipelineruns/a"
    assert seen["auth"] == "Bearer sa-token"


def test_get_404_is_not_found():
    source = _source(lambda request: httpx.Response(404, json={"kind": "Status", "code": 404}))
    with pytest.raises(NotFoundError):
        asyncio.run(source.get(EntityIdentity("builds", "gone")))


@pytest.mark.parametrize("status", [403, 500, 503])
def test_get_other_errors_are_transient(status):
    source = _source(lambda request: httpx.Response(status))
    with pytest.raises(TransientSourceError):
        asyncio.run(source.get(EntityIdentity("builds", "a")))


def test_transport_error_is_transient():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransientSourceError):
        asyncio.run(_source(handler).list())


def test_list_follows_continue_tokens():
    def handler(request):
        if request.url.params.get("continue") == "page-2":
            return httpx.Response(200, json={
                "metadata": {"resourceVersion": "42"},
                "items": [pipelinerun("b")],
            })
        return httpx.Response(200, json={
            "metadata": {"resourceVersion": "41", "continue": "page-2"},
            "items": [pipelinerun("a")],
        })

    items = asyncio.run(_source(handler).list())
    assert [item["metadata"]["name"] for item in items] == ["a", "b"]


def test_watch_streams_events_from_listed_resource_version():
    seen = {}
    added = pipelinerun("a")
    added["metadata"]["resourceVersion"] = "43"
    lines = "\n".join([
        json.dumps({"type": "ADDED", "object": added}),
        "",
        json.dumps({"type": "BOOKMARK", "object": {"metadata": {"resourceVersion": "44"}}}),
        json.dumps({"type": "DELETED", "object": pipelinerun("a")}),
    ]) + "\n"

    def handler(request):
        if request.url.params.get("watch") == "true":
            seen["resourceVersion"] = request.url.params.get("resourceVersion")
            return httpx.Response(200, content=lines.encode())
        return httpx.Response(200, json={"metadata": {"resourceVersion": "42"}, "items": []})

    source = _source(handler)

    async def scenario():
        await source.list()
        return [event async for event in source.watch()]

    events = asyncio.run(scenario())
    assert seen["resourceVersion"] == "42"
    assert [event.type for event in events] == [
        WatchEventType.ADDED, WatchEventType.BOOKMARK, WatchEventType.DELETED
    ]


def test_watch_gone_is_transient():
    def handler(request):
        return httpx.Response(410, json={"kind": "Status", "code": 410})

    async def scenario():
        async for _ in _source(handler).watch():
            pass

    with pytest.raises(TransientSourceError):
        asyncio.run(scenario())


def test_watch_error_event_is_transient():
    line = json.dumps({"type": "ERROR", "object": {"kind": "Status", "code": 410, "message": "too old"}})

    async def scenario():
        async for _ in _source(lambda request: httpx.Response(200, content=line.encode())).watch():
            pass

    with pytest.raises(TransientSourceError):
        asyncio.run(scenario())


def _proxy_error_page(request):
    return httpx.Response(200, text="<html>proxy error</html>", headers={"content-type": "text/html"})


@pytest.mark.parametrize("handler", [
    _proxy_error_page,
    lambda request: httpx.Response(200, json=["not", "an", "object"]),
])
def test_get_undecodable_body_is_transient(handler):
    with pytest.raises(TransientSourceError) as excinfo:
        asyncio.run(_source(handler).get(EntityIdentity("builds", "a")))
    assert excinfo.value.operation == "get"


@pytest.mark.parametrize("handler", [
    _proxy_error_page,
    lambda request: httpx.Response(200, json=[]),
    lambda request: httpx.Response(200, json={"metadata": {}, "items": {"a": 1}}),
])
def test_list_undecodable_body_is_transient(handler):
    with pytest.raises(TransientSourceError) as excinfo:
        asyncio.run(_source(handler).list())
    assert excinfo.value.operation == "list"


def test_watch_is_bounded_server_and_client_side():
    seen = {}

    def handler(request):
        seen["timeoutSeconds"] = request.url.params.get("timeoutSeconds")
        seen["read_timeout"] = request.extensions["timeout"]["read"]
        return httpx.Response(200, content=b"")

    async def scenario():
        return [event async for event in _source(handler).watch()]

    assert asyncio.run(scenario()) == []
    assert seen["timeoutSeconds"] == "300"
    assert seen["read_timeout"] == 120.0


class _StalledStream(httpx.AsyncByteStream):
    async def __aiter__(self):
        raise httpx.ReadTimeout("timed out waiting for the next chunk")
        yield b""


def test_watch_read_timeout_is_transient():
    def handler(request):
        return httpx.Response(200, stream=_StalledStream())

    async def scenario():
        async for _ in _source(handler).watch():
            pass

    with pytest.raises(TransientSourceError) as excinfo:
        asyncio.run(scenario())
    assert excinfo.value.operation == "watch"
    assert "stalled" in str(excinfo.value)
