"""
Report what the configured credentials can see and do on one repository.

Run via: python -m scmkit.cli.probe namespace/name

Reads configuration from /etc/scmkit/config.yaml and environment variables:
  SCMKIT_CLIENT__DRIVER      - stash, bitbucket, github or gitlab
  SCMKIT_CLIENT__SERVER_URL  - provider base URL (required for stash)
  SCMKIT_CLIENT__TOKEN       - access token
  SCMKIT_CLIENT__USERNAME / SCMKIT_CLIENT__PASSWORD - basic auth instead
"""

# ruff: noqa: T201 - CLI output

import argparse
import asyncio
import sys

from scmkit.config import Settings
from scmkit.drivers import new_client
from scmkit.errors import ScmError
from scmkit.logging_config import configure_logging, get_logger

logger = get_logger(__name__)


async def probe(settings: Settings, repo: str) -> int:
    client = new_client(settings.client)

    try:
        repository, _ = await client.find_repository(repo)
        perm, res = await client.find_perms(repo)
    except ScmError as exc:
        logger.error(
            "Probe failed", repo=repo, error=exc.message, kind=type(exc).__name__
        )
        return 1

    print(f"Repository: {repository.full_name}")
    print(f"Default branch: {repository.branch or '-'}")
    print(f"Private: {'yes' if repository.private else 'no'}")
    print(f"Clone URL: {repository.clone or '-'}")
    print(f"Permission: {perm.level.name.lower()}")
    print(f"  pull={perm.pull} push={perm.push} admin={perm.admin}")
    if res.rate.limit:
        print(f"Rate limit: {res.rate.remaining}/{res.rate.limit}")
    return 0


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        description="Resolve repository metadata and effective permissions"
    )
    parser.add_argument("repo", help="Repository as namespace/name")
    args = parser.parse_args(argv)

    settings = Settings()
    configure_logging(json_logs=settings.json_logs, log_level=settings.log_level)

    try:
        code = asyncio.run(probe(settings, args.repo))
    except ValueError as exc:
        # Configuration that cannot address a provider
        logger.error("Invalid configuration", error=str(exc))
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
