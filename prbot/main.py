import asyncio
import sys

from prbot.core.config import GITHUB_OUTPUT
from prbot.core.logging import configure_logging, logger
from prbot.schemas.pr import ImplementationResult, MissingEnvironmentError, PullRequestContext
from prbot.services.readme import implement_readme, write_github_output


async def run(ctx: PullRequestContext) -> ImplementationResult:
    logger.info("Starting AI PR implementation...")
    logger.info(f"Repository: {ctx.repository}")
    logger.info(f"PR: #{ctx.pr_number}, Branch: {ctx.branch_name}")
    return await implement_readme(ctx)


def main() -> int:
    configure_logging()
    try:
        ctx = PullRequestContext.from_env()
    except MissingEnvironmentError as exc:
        logger.error(str(exc))
        return 1

    try:
        result = asyncio.run(run(ctx))
    except Exception as exc:
        logger.exception(f"Error in implementation: {exc}")
        result = ImplementationResult(status="failure", message=str(exc))

    write_github_output(result, GITHUB_OUTPUT)
    logger.info(f"PR implementation completed with status: {result.status}")
    return 0 if result.status == "success" else 1


if __name__ == "__main__":
    sys.exit(main())
