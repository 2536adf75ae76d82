"""CLI entrypoint for pr-reviewer."""

from __future__ import annotations

import logging.config
from pathlib import Path
from typing import Optional

import typer
import uvicorn

app = typer.Typer(name="pr-reviewer", help="Local PR review comment delivery", invoke_without_command=True)


def _log_config() -> dict:
    log_config = uvicorn.config.LOGGING_CONFIG
    log_config["formatters"]["default"]["fmt"] = "%(asctime)s %(levelprefix)s %(message)s"
    log_config["formatters"]["default"]["datefmt"] = "%Y-%m-%d %H:%M:%S"
    log_config["formatters"]["access"]["fmt"] = '%(asctime)s %(levelprefix)s %(client_addr)s - "%(request_line)s" %(status_code)s'
    log_config["formatters"]["access"]["datefmt"] = "%Y-%m-%d %H:%M:%S"
    # Package loggers share uvicorn's default handler (stderr).
    log_config["loggers"]["pr_reviewer"] = {"handlers": ["default"], "level": "INFO", "propagate": False}
    return log_config


@app.callback(invoke_without_command=True)
def start(
    ctx: typer.Context,
    port: Optional[int] = typer.Option(None, help="Server port (default from config)"),
    config_path: Optional[Path] = typer.Option(None, "--config", help="Path to config.yaml"),
) -> None:
    """Start the PR Reviewer server."""
    if ctx.invoked_subcommand is not None:
        return

    from pr_reviewer.config import load_config
    from pr_reviewer.server import create_app

    config = load_config(config_path)
    if port is not None:
        config.port = port
    fastapi_app = create_app(config=config)

    typer.echo(f"Starting PR Reviewer on http://{config.host}:{config.port}")

    uvicorn.run(
        fastapi_app,
        host=config.host,
        port=config.port,
        log_level="info",
        log_config=_log_config(),
        timeout_graceful_shutdown=1,
    )


@app.command("mcp")
def run_mcp(
    working_dir: Optional[Path] = typer.Option(None, "--working-dir", help="Repository the agent works in (default: cwd)"),
    client_name: Optional[str] = typer.Option(None, "--client-name", help="Name shown in the review UI"),
    config_path: Optional[Path] = typer.Option(None, "--config", help="Path to config.yaml"),
) -> None:
    """Serve the MCP tools over stdio for a coding agent."""
    from pr_reviewer.config import load_config
    from pr_reviewer.runtime import build_runtime
    from pr_reviewer.tools import mcp, set_runtime

    # stdout carries the protocol; logs must stay on stderr.
    logging.config.dictConfig(_log_config())

    config = load_config(config_path)
    if client_name:
        config.client_name = client_name
    runtime = build_runtime(config)
    set_runtime(runtime, working_dir=str((working_dir or Path.cwd()).expanduser().resolve()))
    try:
        mcp.run(transport="stdio")
    finally:
        runtime.close()


if __name__ == "__main__":
    app()
