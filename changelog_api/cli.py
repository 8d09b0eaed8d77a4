"""CLI entrypoint (Typer).

Commands:
- `changelog serve`: run the API server
- `changelog generate owner/repo --since ... --until ...`: run one generation
  locally and print the changelog as markdown
- `changelog sweep`: fail generations stuck in `processing`
- `changelog set-role USER ROLE`: assign a role (admin, developer, viewer)
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, time, timedelta
from pathlib import Path
from typing import Optional

import typer

from changelog_api.config import get_settings
from changelog_api.errors import ChangelogError
from changelog_api.schemas import UserRole


app = typer.Typer(help="AI changelog generation from GitHub commit history.")

DATE_FORMATS = ["%Y-%m-%d", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d %H:%M:%S"]


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging.")):
    settings = get_settings()
    logging.basicConfig(
        level=logging.DEBUG if verbose else settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Bind address."),
    port: Optional[int] = typer.Option(None, help="Bind port."),
    reload: bool = typer.Option(False, help="Reload on code changes."),
):
    """Run the API server."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "changelog_api.api.main:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=reload or settings.debug,
    )


async def _generate(
    repository: str,
    branch: Optional[str],
    since: datetime,
    until: datetime,
    token: Optional[str],
) -> Optional[str]:
    from changelog_api.api.deps import ServiceContainer
    from changelog_api.schemas import Failed, GenerationRequest
    from changelog_api.tools.github import split_repository_ref

    settings = get_settings()
    services = ServiceContainer.build(settings)
    try:
        await services.database.init()

        owner, name = split_repository_ref(repository)
        payload = await services.github.get_repository(owner, name, token=token)
        stored = await services.repositories.upsert_from_github(payload)

        request = GenerationRequest(
            repository_ref=stored.full_name,
            branch=branch or stored.default_branch,
            start_date=since,
            end_date=until,
        )
        record = await services.orchestrator.start_generation(None, request, access_token=token)
        typer.echo(f"Generation {record.id} started for {stored.full_name}@{request.branch}", err=True)
        await services.orchestrator.drain()

        record = await services.generations.get(record.id)
        if record is None or record.generated_content is None:
            reason = record.state.reason if record is not None and isinstance(record.state, Failed) else None
            typer.echo(f"Generation failed: {reason or 'unknown error'}", err=True)
            return None
        return record.generated_content.to_markdown()
    finally:
        await services.close()


@app.command()
def generate(
    repository: str = typer.Argument(..., help="Repository as owner/name."),
    since: datetime = typer.Option(..., formats=DATE_FORMATS, help="Start of the commit range (UTC)."),
    until: datetime = typer.Option(..., formats=DATE_FORMATS, help="End of the commit range (UTC)."),
    branch: Optional[str] = typer.Option(None, help="Branch (defaults to the repository default)."),
    token: Optional[str] = typer.Option(None, envvar="GITHUB_TOKEN", help="GitHub token."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write markdown here."),
):
    """Generate a changelog for a commit range and print it as markdown."""
    if until.time() == time.min:
        # A bare date means the whole day
        until = until.replace(hour=23, minute=59, second=59)
    if since > until:
        typer.echo("--since must not be after --until", err=True)
        raise typer.Exit(code=2)

    try:
        markdown = asyncio.run(_generate(repository, branch, since, until, token))
    except ChangelogError as e:
        typer.echo(f"{e.code}: {e.message}", err=True)
        raise typer.Exit(code=1)
    if markdown is None:
        raise typer.Exit(code=1)

    if output is not None:
        output.write_text(markdown, encoding="utf-8")
        typer.echo(f"Wrote {output}", err=True)
    else:
        typer.echo(markdown)


async def _sweep(older_than_minutes: int) -> int:
    from changelog_api.database.models import utcnow
    from changelog_api.database.session import Database
    from changelog_api.services.generations import GenerationStore

    database = Database.from_settings(get_settings())
    try:
        await database.init()
        cutoff = utcnow() - timedelta(minutes=older_than_minutes)
        return await GenerationStore(database).expire_stale(older_than=cutoff)
    finally:
        await database.close()


@app.command()
def sweep(
    older_than: Optional[int] = typer.Option(
        None,
        "--older-than",
        help="Minutes without progress before a generation counts as stuck.",
    ),
):
    """Mark generations stuck in processing as failed."""
    minutes = older_than if older_than is not None else get_settings().generation_stale_after_minutes
    expired = asyncio.run(_sweep(minutes))
    typer.echo(f"Expired {expired} stale generations")


async def _set_role(user: str, role: UserRole) -> str:
    from changelog_api.database.session import Database
    from changelog_api.services.users import UserStore

    database = Database.from_settings(get_settings())
    try:
        await database.init()
        updated = await UserStore(database).set_role(user, role)
        return updated.github_username or updated.id
    finally:
        await database.close()


@app.command("set-role")
def set_role(
    user: str = typer.Argument(..., help="User id or GitHub username."),
    role: UserRole = typer.Argument(..., help="Role to assign."),
):
    """Assign a role to a user who has signed in at least once."""
    try:
        name = asyncio.run(_set_role(user, role))
    except ChangelogError as e:
        typer.echo(f"{e.code}: {e.message}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"{name} is now {role.value}")


if __name__ == "__main__":
    app()
