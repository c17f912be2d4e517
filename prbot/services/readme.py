"""Generate a README from a PR description and commit it to the PR branch."""

import base64
import logging
from typing import Any, Dict, Optional

import httpx

from prbot.core.config import (
    GITHUB_OUTPUT,
    MCP_TOOL_COMMENT,
    MCP_TOOL_GET_FILE,
    MCP_TOOL_PUT_FILE,
    README_PATH,
)
from prbot.mcp.client import ToolClient
from prbot.mcp.errors import ToolInvocationError
from prbot.schemas.pr import FileChange, ImplementationResult, PullRequestContext
from prbot.services import anthropic, github_cli

logger = logging.getLogger(__name__)


def build_readme_prompt(ctx: PullRequestContext) -> str:
    return f"""
You are an AI tasked with creating a README.md file for a GitHub repository based on a Pull Request description.

Repository: {ctx.repository}
Branch: {ctx.branch_name}
PR Number: {ctx.pr_number}

PR Description:
{ctx.pr_body}

Based on this PR description, create a README.md file for this repository.
Your README should be comprehensive, well-formatted with Markdown, and include all the necessary sections
(description, features, installation instructions, etc.).

If the PR description mentions specific technologies, themes, or features, be sure to incorporate those.

Respond with ONLY the content that should go in the README.md file, nothing else.
"""


def commit_message(ctx: PullRequestContext, exists: bool, path: str = README_PATH) -> str:
    verb = "Update" if exists else "Create"
    return f"{verb} {path} based on PR #{ctx.pr_number}"


def completion_comment(exists: bool, path: str = README_PATH) -> str:
    verb = "updated" if exists else "created"
    return f"✅ I've {verb} the {path} based on the PR description. Please review the changes!"


async def find_existing_sha(
    client: ToolClient, ctx: PullRequestContext, path: str = README_PATH
) -> Optional[str]:
    args = {
        "owner": ctx.repo_owner,
        "repo": ctx.repo_name,
        "path": path,
        "branch": ctx.branch_name,
    }
    try:
        result = await client.invoke(MCP_TOOL_GET_FILE, args)
    except ToolInvocationError as exc:
        logger.info(f"{path} lookup via tool failed ({exc.kind}), asking gh")
        return await github_cli.get_file_sha(
            ctx.repo_owner, ctx.repo_name, path, ctx.branch_name, token=ctx.github_token
        )
    if isinstance(result, dict) and result.get("sha"):
        return str(result["sha"])
    return None


async def write_file(
    client: ToolClient,
    ctx: PullRequestContext,
    content: str,
    sha: Optional[str],
    path: str = README_PATH,
) -> FileChange:
    message = commit_message(ctx, sha is not None, path)
    args: Dict[str, Any] = {
        "owner": ctx.repo_owner,
        "repo": ctx.repo_name,
        "path": path,
        "message": message,
        "content": base64.b64encode(content.encode()).decode(),
        "branch": ctx.branch_name,
    }
    if sha:
        args["sha"] = sha
    try:
        result = await client.invoke(MCP_TOOL_PUT_FILE, args)
        logger.info(f"file update result: {result}")
        return FileChange(name="create_or_update_file", path=path, via="tool")
    except ToolInvocationError as exc:
        logger.warning(f"{exc.tool_name} failed ({exc.kind}), falling back to gh api")
    await github_cli.put_file(
        ctx.repo_owner,
        ctx.repo_name,
        path,
        ctx.branch_name,
        content,
        message,
        sha=sha,
        token=ctx.github_token,
    )
    return FileChange(name="create_or_update_file", path=path, via="gh")


async def post_comment(client: ToolClient, ctx: PullRequestContext, body: str) -> None:
    args = {
        "owner": ctx.repo_owner,
        "repo": ctx.repo_name,
        "issue_number": ctx.pr_number,
        "body": body,
    }
    try:
        await client.invoke(MCP_TOOL_COMMENT, args)
        return
    except ToolInvocationError as exc:
        logger.warning(f"{exc.tool_name} failed ({exc.kind}), falling back to gh pr comment")
    await github_cli.comment_on_pr(ctx.pr_number, body, token=ctx.github_token)


async def implement_readme(
    ctx: PullRequestContext,
    client: Optional[ToolClient] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    path: str = README_PATH,
) -> ImplementationResult:
    owned = client is None
    if client is None:
        client = ToolClient.for_github(ctx.github_token)

    try:
        await client.start()
        readme = await anthropic.generate_text(
            build_readme_prompt(ctx), ctx.ai_api_key, client=http_client
        )
        logger.info(f"generated {path} ({len(readme)} chars)")

        sha = await find_existing_sha(client, ctx, path)
        exists = sha is not None
        if exists:
            logger.info(f"existing {path} found with sha {sha}")
        else:
            logger.info(f"{path} does not exist yet, will create it")

        change = await write_file(client, ctx, readme, sha, path)
        await post_comment(client, ctx, completion_comment(exists, path))
        await github_cli.mark_pr_ready(ctx.pr_number, token=ctx.github_token)
    finally:
        if owned:
            await client.shutdown()

    verb = "Updated" if exists else "Created"
    return ImplementationResult(
        status="success",
        message=f"{verb} {path} successfully",
        file_changes=[change],
    )


def write_github_output(result: ImplementationResult, output_path: str = GITHUB_OUTPUT) -> None:
    if not output_path:
        return
    with open(output_path, "a", encoding="utf-8") as f:
        f.write(f"status={result.status}\n")
        f.write(f"message={result.message}\n")
