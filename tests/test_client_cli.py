import httpx
from typer.testing import CliRunner

from client_cli.main import app, iter_sse


def test_iter_sse_pairs_events_with_payloads():
    lines = [
        "event: token",
        'data: {"content": "Hi"}',
        "",
        "event: tool-result",
        'data: {"tool": "plan_route", "error": "boom"}',
        "",
        "event: done",
        "data: {}",
        "",
    ]
    assert list(iter_sse(iter(lines))) == [
        ("token", {"content": "Hi"}),
        ("tool-result", {"tool": "plan_route", "error": "boom"}),
        ("done", {}),
    ]


def test_iter_sse_tolerates_bytes_and_missing_trailing_blank():
    lines = [b"event: error", b'data: {"message": "Session not found"}']
    assert list(iter_sse(iter(lines))) == [("error", {"message": "Session not found"})]


def test_chat_command_prints_streamed_reply(monkeypatch):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(201, json={"sessionId": "s1"})
        body = 'event: token\ndata: {"content": "Hello"}\n\nevent: done\ndata: {}\n\n'
        return httpx.Response(200, text=body, headers={"content-type": "text/event-stream"})

    real_client = httpx.Client
    monkeypatch.setattr(
        "client_cli.main.httpx.Client",
        lambda **kwargs: real_client(transport=httpx.MockTransport(handler), **kwargs),
    )

    result = CliRunner().invoke(app, ["chat", "hi there", "--conversation", "c1"])

    assert result.exit_code == 0
    assert "Hello" in result.output
