import asyncio
import base64
import json

import httpx
import pytest

from prbot.mcp.errors import CallTimeoutError, ProtocolError, ToolInvocationError
from prbot.schemas.pr import ImplementationResult, MissingEnvironmentError, PullRequestContext
from prbot.services import anthropic, github_cli, readme

ENV = {
    "PR_BODY": "Add a cat-themed landing page",
    "REPO_OWNER": "octo",
    "REPO_NAME": "whiskers",
    "PR_NUMBER": "12",
    "BRANCH_NAME": "feature/cats",
    "AI_API_KEY": "sk-test",
    "GITHUB_TOKEN": "ghp-test",
}


class FakeToolClient:
    def __init__(self, responses=None, failures=None):
        self.responses = responses or {}
        self.failures = failures or {}
        self.calls = []
        self.started = False
        self.stopped = False

    async def start(self):
        self.started = True

    async def shutdown(self):
        self.stopped = True

    async def invoke(self, name, arguments=None, timeout=None):
        self.calls.append((name, arguments))
        if name in self.failures:
            raise ToolInvocationError(name, arguments, self.failures[name])
        return self.responses.get(name, {})


def anthropic_transport(text="# Whiskers\n\nMeow.", seen=None):
    def handler(request):
        if seen is not None:
            seen.append(request)
        return httpx.Response(
            200, json={"content": [{"type": "text", "text": f"\n{text}\n"}]}
        )

    return httpx.MockTransport(handler)


@pytest.fixture
def ctx():
    return PullRequestContext.from_env(ENV)


@pytest.fixture
def gh_calls(monkeypatch):
    calls = []

    async def fake_run_gh(args, token=None, stdin=None, timeout=None):
        calls.append({"args": args, "token": token, "stdin": stdin})
        if args[:1] == ["api"] and "--jq" in args:
            raise github_cli.GhCliError("not found", exit_code=1)
        if args[:1] == ["api"]:
            return json.dumps({"content": {"path": "README.md"}})
        return ""

    monkeypatch.setattr(github_cli, "run_gh", fake_run_gh)
    return calls


def run_flow(ctx, client, transport):
    async def scenario():
        async with httpx.AsyncClient(transport=transport) as http:
            return await readme.implement_readme(ctx, client=client, http_client=http)

    return asyncio.run(scenario())


def test_context_from_env_reports_every_missing_variable():
    with pytest.raises(MissingEnvironmentError) as info:
        PullRequestContext.from_env({"PR_BODY": "x", "REPO_OWNER": " "})
    assert "REPO_OWNER" in info.value.names
    assert "GITHUB_TOKEN" in info.value.names
    assert "PR_BODY" not in info.value.names


def test_context_hides_secrets_in_repr(ctx):
    assert "sk-test" not in repr(ctx)
    assert "ghp-test" not in repr(ctx)
    assert ctx.repository == "octo/whiskers"
    assert ctx.pr_number == 12


def test_creates_readme_when_missing(ctx, gh_calls):
    seen = []
    client = FakeToolClient(
        failures={"get_file_contents": ProtocolError({"code": 404, "message": "Not Found"})}
    )
    result = run_flow(ctx, client, anthropic_transport(seen=seen))

    assert result.status == "success"
    assert result.message == "Created README.md successfully"
    assert result.file_changes[0].via == "tool"

    request = seen[0]
    assert request.headers["x-api-key"] == "sk-test"
    assert request.headers["anthropic-version"] == "2023-06-01"
    body = json.loads(request.content)
    assert "Add a cat-themed landing page" in body["messages"][0]["content"]

    names = [name for name, _ in client.calls]
    assert names == ["get_file_contents", "create_or_update_file", "add_issue_comment"]
    put_args = client.calls[1][1]
    assert put_args["message"] == "Create README.md based on PR #12"
    assert "sha" not in put_args
    assert base64.b64decode(put_args["content"]).decode() == "# Whiskers\n\nMeow."
    comment = client.calls[2][1]
    assert comment["issue_number"] == 12
    assert "created" in comment["body"]

    assert [c["args"][:2] for c in gh_calls] == [
        ["api", "repos/octo/whiskers/contents/README.md?ref=feature/cats"],
        ["pr", "ready"],
    ]
    assert all(c["token"] == "ghp-test" for c in gh_calls)
    assert client.started and not client.stopped


def test_updates_readme_when_sha_found(ctx, gh_calls):
    client = FakeToolClient(responses={"get_file_contents": {"sha": "abc123"}})
    result = run_flow(ctx, client, anthropic_transport())

    assert result.message == "Updated README.md successfully"
    put_args = client.calls[1][1]
    assert put_args["sha"] == "abc123"
    assert put_args["message"] == "Update README.md based on PR #12"
    assert [c["args"][:2] for c in gh_calls] == [["pr", "ready"]]


def test_failed_tool_calls_fall_back_to_gh(ctx, gh_calls):
    client = FakeToolClient(
        responses={"get_file_contents": {"sha": "abc123"}},
        failures={
            "create_or_update_file": CallTimeoutError("create_or_update_file", 2, 30),
            "add_issue_comment": ProtocolError({"message": "forbidden"}),
        },
    )
    result = run_flow(ctx, client, anthropic_transport())

    assert result.file_changes[0].via == "gh"
    put_call, comment_call, ready_call = gh_calls
    assert put_call["args"][:4] == ["api", "--method", "PUT", "repos/octo/whiskers/contents/README.md"]
    put_body = json.loads(put_call["stdin"])
    assert put_body["sha"] == "abc123"
    assert put_body["branch"] == "feature/cats"
    assert comment_call["args"][:3] == ["pr", "comment", "12"]
    assert "updated" in comment_call["stdin"]
    assert ready_call["args"] == ["pr", "ready", "12"]


def test_text_api_error_propagates(ctx, gh_calls):
    def handler(request):
        return httpx.Response(400, json={"error": {"message": "bad request"}})

    client = FakeToolClient()
    with pytest.raises(anthropic.TextApiError) as info:
        run_flow(ctx, client, httpx.MockTransport(handler))
    assert info.value.status_code == 400
    assert client.calls == []


def test_text_api_retries_server_errors():
    attempts = []

    def handler(request):
        attempts.append(request)
        if len(attempts) == 1:
            return httpx.Response(503, text="overloaded")
        return httpx.Response(200, json={"content": [{"type": "text", "text": "ok"}]})

    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            return await anthropic.generate_text("hi", "key", client=http)

    assert asyncio.run(scenario()) == "ok"
    assert len(attempts) == 2


def test_extract_text_requires_text_block():
    with pytest.raises(anthropic.TextApiError):
        anthropic.extract_text({"content": [{"type": "tool_use"}]})


def test_write_github_output(tmp_path):
    output = tmp_path / "out.txt"
    output.write_text("existing=1\n")
    readme.write_github_output(
        ImplementationResult(status="success", message="Created README.md successfully"),
        str(output),
    )
    assert output.read_text() == (
        "existing=1\nstatus=success\nmessage=Created README.md successfully\n"
    )


def test_write_github_output_without_path_is_noop():
    readme.write_github_output(ImplementationResult(status="failure", message="x"), "")
