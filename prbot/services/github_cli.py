"""``gh`` command-line fallback for operations the tool server could not do."""

import asyncio
import base64
import json
import logging
import os
import shutil
from typing import Any, Dict, List, Optional

from prbot.core.config import GH_CLI_TIMEOUT_SEC, GH_OUTPUT_LINES

logger = logging.getLogger(__name__)


class GhCliError(RuntimeError):
    def __init__(
        self,
        message: str,
        exit_code: Optional[int] = None,
        stderr_tail: Optional[List[str]] = None,
    ) -> None:
        self.exit_code = exit_code
        self.stderr_tail = stderr_tail or []
        detail = f": {self.stderr_tail[-1]}" if self.stderr_tail else ""
        super().__init__(f"{message}{detail}")


def resolve_gh_path() -> Optional[str]:
    cli_path = os.environ.get("GH_CLI_PATH")
    if cli_path and os.path.exists(cli_path):
        return cli_path
    return shutil.which("gh")


async def read_stream_lines(
    stream: asyncio.StreamReader, collector: List[str], limit: int
) -> None:
    while True:
        line = await stream.readline()
        if not line:
            break
        collector.append(line.decode(errors="replace").rstrip())
        if len(collector) > limit:
            collector.pop(0)


async def run_gh(
    args: List[str],
    token: Optional[str] = None,
    stdin: Optional[str] = None,
    timeout: float = GH_CLI_TIMEOUT_SEC,
) -> str:
    gh_path = resolve_gh_path()
    if not gh_path:
        raise GhCliError("gh cli not found")

    env = os.environ.copy()
    if token:
        env["GITHUB_TOKEN"] = token

    logger.info(f"running gh {' '.join(args[:2])}")
    process = await asyncio.create_subprocess_exec(
        gh_path,
        *args,
        stdin=asyncio.subprocess.PIPE,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        env=env,
    )
    if stdin:
        process.stdin.write(stdin.encode())
        await process.stdin.drain()
    process.stdin.close()

    stdout_lines: List[str] = []
    stderr_lines: List[str] = []
    stdout_task = asyncio.create_task(
        read_stream_lines(process.stdout, stdout_lines, GH_OUTPUT_LINES)
    )
    stderr_task = asyncio.create_task(
        read_stream_lines(process.stderr, stderr_lines, GH_OUTPUT_LINES)
    )
    try:
        await asyncio.wait_for(process.wait(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        raise GhCliError(f"gh {args[0]} timed out after {timeout:g}s")
    finally:
        await asyncio.gather(stdout_task, stderr_task, return_exceptions=True)

    if process.returncode != 0:
        for line in stderr_lines[-5:]:
            logger.warning(f"gh: {line}")
        raise GhCliError(
            f"gh {args[0]} failed with exit code {process.returncode}",
            exit_code=process.returncode,
            stderr_tail=stderr_lines[-50:],
        )
    return "\n".join(stdout_lines)


async def mark_pr_ready(pr_number: int, token: Optional[str] = None) -> None:
    await run_gh(["pr", "ready", str(pr_number)], token=token)


async def comment_on_pr(pr_number: int, body: str, token: Optional[str] = None) -> None:
    await run_gh(["pr", "comment", str(pr_number), "--body-file", "-"], token=token, stdin=body)


async def get_file_sha(
    owner: str, repo: str, path: str, branch: str, token: Optional[str] = None
) -> Optional[str]:
    try:
        output = await run_gh(
            ["api", f"repos/{owner}/{repo}/contents/{path}?ref={branch}", "--jq", ".sha"],
            token=token,
        )
    except GhCliError as exc:
        logger.info(f"{path} not found on {branch} via gh: {exc}")
        return None
    sha = output.strip()
    return sha or None


async def put_file(
    owner: str,
    repo: str,
    path: str,
    branch: str,
    content: str,
    message: str,
    sha: Optional[str] = None,
    token: Optional[str] = None,
) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "message": message,
        "content": base64.b64encode(content.encode()).decode(),
        "branch": branch,
    }
    if sha:
        body["sha"] = sha
    output = await run_gh(
        ["api", "--method", "PUT", f"repos/{owner}/{repo}/contents/{path}", "--input", "-"],
        token=token,
        stdin=json.dumps(body),
    )
    try:
        return json.loads(output) if output.strip() else {}
    except ValueError:
        return {"raw": output}
