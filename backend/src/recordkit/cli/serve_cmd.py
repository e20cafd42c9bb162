"""Serve command: run the API with uvicorn."""

import click

from recordkit.config import Settings


@click.command()
@click.option("--host", default=None, help="Bind address (RECORDKIT_HOST).")
@click.option("--port", default=None, type=int, help="Bind port (RECORDKIT_PORT).")
@click.option("--reload", is_flag=True, default=False, help="Reload on code changes.")
def serve(host: str | None, port: int | None, reload: bool):
    """Run the recordkit API server."""
    import uvicorn

    settings = Settings.from_env()
    uvicorn.run(
        "recordkit.api.app:create_app",
        factory=True,
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
        log_level=settings.log_level,
    )
