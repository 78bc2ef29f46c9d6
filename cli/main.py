"""
learnflow - Main CLI Application

Command-line interface for running and inspecting the lms and reco services.
"""
import asyncio
import json
import logging
from enum import Enum
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from config import ServiceName, get_config

# Initialize app
app = typer.Typer(
    name="learnflow",
    help="learnflow - Event-sourced learning platform with course recommendations",
    add_completion=False
)

console = Console()

# Logging configuration
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger("learnflow.cli")


class Service(str, Enum):
    """Deployable services."""
    LMS = "lms"
    RECO = "reco"


class OutputFormat(str, Enum):
    """Output format options."""
    JSON = "json"
    TABLE = "table"


@app.command("config")
def show_config():
    """Show the effective configuration (credentials excluded)."""
    console.print_json(json.dumps(get_config().to_dict(), indent=2))


@app.command("init-db")
def init_db(
    service: Service = typer.Argument(..., help="Service whose tables to create"),
    drop: bool = typer.Option(False, "--drop", help="Drop existing tables first"),
):
    """Create the event store and read-model tables of one service."""
    database_url = get_config().database.url_for(ServiceName(service.value))
    console.print(f"[bold]Initializing {service.value} database[/bold]")

    asyncio.run(_init_db(ServiceName(service.value), drop))

    console.print(f"[green]Tables ready at {_redact(database_url)}[/green]")


@app.command()
def serve(
    service: Service = typer.Argument(..., help="Service to run"),
    host: Optional[str] = typer.Option(None, "--host", "-h", help="Server host (default from API_HOST)"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Server port (default from API_PORT)"),
    reload: bool = typer.Option(False, "--reload", help="Enable auto-reload")
):
    """Start the lms or reco API server."""
    api_config = get_config().api
    host = host or api_config.host
    port = port or api_config.port
    console.print(f"[bold]Starting {service.value} at {host}:{port}[/bold]")

    import uvicorn
    uvicorn.run(
        f"api.main:{service.value}_app",
        factory=True,
        host=host,
        port=port,
        reload=reload or api_config.reload,
        workers=None if (reload or api_config.reload) else api_config.workers,
    )


@app.command()
def recommend(
    user_id: str = typer.Argument(..., help="Learner to recommend a course for"),
    output: OutputFormat = typer.Option(OutputFormat.TABLE, "--output", "-o", help="Output format"),
):
    """Compute a learner's next course against the configured reco database and lms."""
    recommendation = asyncio.run(_recommend(user_id))

    if recommendation is None:
        console.print(f"[yellow]No recommendations available for {user_id}[/yellow]")
        raise typer.Exit(1)

    if output == OutputFormat.JSON:
        console.print_json(json.dumps({
            "user_id": user_id,
            "recommended_course": recommendation.to_dict(),
        }))
        return

    table = Table(title=f"Next course for {user_id}")
    table.add_column("Course", style="cyan")
    table.add_column("Title", style="green")
    table.add_column("Reason")
    table.add_row(recommendation.course_id, recommendation.title, recommendation.reason)
    console.print(table)


@app.command()
def status():
    """Show configured endpoints and database reachability."""
    config = get_config()
    console.print(Panel.fit(
        "[bold blue]learnflow - lms + reco[/bold blue]",
        border_style="blue"
    ))

    table = Table(title="Component Status")
    table.add_column("Component", style="cyan")
    table.add_column("Status", style="green")
    table.add_column("Details")

    for service in ServiceName:
        reachable = asyncio.run(_ping_database(service))
        table.add_row(
            f"{service.value} database",
            "✓ Connected" if reachable else "○ Unreachable",
            _redact(config.database.url_for(service)),
        )
    table.add_row("lms service", "-", config.services.lms_service_url)
    table.add_row(
        "reco relay",
        "✓ Enabled" if config.services.relay_enabled else "○ Disabled",
        config.services.reco_service_url,
    )

    console.print(table)


# Helper functions
async def _init_db(service: ServiceName, drop: bool) -> None:
    from core.bootstrap import build_lms_services, build_reco_services
    from db.models import LMS_TABLES, RECO_TABLES

    build = build_lms_services if service == ServiceName.LMS else build_reco_services
    tables = LMS_TABLES if service == ServiceName.LMS else RECO_TABLES
    services = build(get_config())
    try:
        if drop:
            await services.db.drop_tables(tables)
        await services.db.create_tables(tables)
    finally:
        await services.shutdown()


async def _recommend(user_id: str):
    from core.bootstrap import reco_services

    async with reco_services(get_config()) as services:
        return await services.recommendation_engine.recommend(user_id)


async def _ping_database(service: ServiceName) -> bool:
    from sqlalchemy import text
    from sqlalchemy.exc import SQLAlchemyError

    from db.database import DatabaseClient

    db = DatabaseClient(get_config().database.url_for(service))
    try:
        async with db.session() as session:
            await session.execute(text("SELECT 1"))
        return True
    except (SQLAlchemyError, OSError) as e:
        logger.debug(f"{service.value} database unreachable: {e}")
        return False
    finally:
        await db.close()


def _redact(url: str) -> str:
    """Hide the password part of a database URL."""
    if "@" not in url or "://" not in url:
        return url
    scheme, rest = url.split("://", 1)
    credentials, host = rest.rsplit("@", 1)
    user = credentials.split(":", 1)[0]
    return f"{scheme}://{user}:***@{host}"


def main():
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
