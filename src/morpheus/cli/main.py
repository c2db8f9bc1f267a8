"""
Main CLI application for Morpheus.

Provides the command-line interface for serving the router over HTTP and
for one-shot interaction with the capability agents.
"""

import asyncio
import json
import logging
import signal
import sys
from typing import Optional

import click
import uvicorn
import yaml
from fastapi import FastAPI

from ..api.server import create_app
from ..lib.config import ConfigurationError, MorpheusConfig, get_config, initialize_config
from ..lib.logging_config import get_audit_logger, setup_logging
from ..lib.metrics import initialize_metrics
from ..lib.observability import initialize_telemetry, shutdown_telemetry
from ..services.container import ServiceContainer


logger = logging.getLogger("morpheus.cli")
audit_logger = get_audit_logger()


def _bootstrap(config_path: Optional[str]) -> MorpheusConfig:
    """Load configuration, then set up logging and telemetry from it."""
    config = initialize_config(config_path).get_config()

    setup_logging(config.logging.model_dump())
    if config.observability.enabled:
        telemetry_manager = initialize_telemetry(config.observability.model_dump())
        initialize_metrics(telemetry_manager.get_meter())
        logger.info("Observability initialized")
    else:
        initialize_metrics()
    return config


class MorpheusApplication:
    """Main Morpheus application manager."""

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path
        self.app: Optional[FastAPI] = None
        self.container: Optional[ServiceContainer] = None
        self._shutdown_event = asyncio.Event()

    def initialize(self) -> None:
        """Initialize configuration, logging, telemetry and services."""
        try:
            logger.info("Initializing Morpheus application")
            config = _bootstrap(self.config_path)

            self.container = ServiceContainer(config)
            self.app = create_app(self.container)

            audit_logger.log_session_event(
                event_type="system_startup",
                session_id="system",
                action="initialize",
                result="success",
                metadata={
                    "config_path": config.config_file_path,
                    "agents": self.container.supervisor.registered_names()
                }
            )
            logger.info("Morpheus application initialized successfully")

        except Exception as e:
            logger.error(f"Failed to initialize Morpheus application: {e}")
            audit_logger.log_session_event(
                event_type="system_startup",
                session_id="system",
                action="initialize",
                result="failed",
                metadata={"error": str(e)}
            )
            raise

    def shutdown(self) -> None:
        logger.info("Shutting down Morpheus application")
        shutdown_telemetry()
        audit_logger.log_session_event(
            event_type="system_shutdown",
            session_id="system",
            action="shutdown",
            result="success"
        )

    def setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        def signal_handler(signum, frame):
            logger.info(f"Received signal {signum}, initiating shutdown")
            self._shutdown_event.set()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    async def run_server(self, host: Optional[str] = None, port: Optional[int] = None) -> None:
        """Run the HTTP server until a shutdown signal arrives."""
        self.initialize()
        config = get_config()

        final_host = host or config.server.host
        final_port = port or config.server.port
        logger.info(f"Starting Morpheus server on {final_host}:{final_port}")

        self.setup_signal_handlers()

        server = uvicorn.Server(uvicorn.Config(
            app=self.app,
            host=final_host,
            port=final_port,
            log_config=None,
            access_log=False
        ))

        try:
            await self._run_with_shutdown(server)
        finally:
            self.shutdown()

    async def _run_with_shutdown(self, server: uvicorn.Server) -> None:
        """Run server with shutdown event handling."""
        server_task = asyncio.create_task(server.serve())
        shutdown_task = asyncio.create_task(self._shutdown_event.wait())

        done, pending = await asyncio.wait(
            [server_task, shutdown_task],
            return_when=asyncio.FIRST_COMPLETED
        )

        for task in pending:
            if task is not server_task:
                task.cancel()

        if shutdown_task in done:
            server.should_exit = True
            await server_task


def _echo_result(payload: dict, output_format: str) -> None:
    if output_format == "json":
        click.echo(json.dumps(payload, indent=2))
    elif output_format == "yaml":
        click.echo(yaml.dump(payload, default_flow_style=False, indent=2))
    else:
        click.echo(payload["content"])
        if not payload["success"]:
            click.echo(f"\nError: {payload['error']}", err=True)


# CLI Commands

@click.group()
@click.option('--config', '-c', help='Configuration file path')
@click.option('--debug', is_flag=True, help='Enable debug mode')
@click.pass_context
def cli(ctx, config, debug):
    """Morpheus: a supervising router for sandboxed agents."""
    ctx.ensure_object(dict)
    ctx.obj['config_path'] = config
    ctx.obj['debug'] = debug

    if debug:
        logging.basicConfig(level=logging.DEBUG)


@cli.command()
@click.option('--host', default=None, help='Host to bind to (default: server.host)')
@click.option('--port', default=None, type=int, help='Port to bind to (default: server.port)')
@click.pass_context
def serve(ctx, host, port):
    """Start the Morpheus HTTP and websocket server."""
    try:
        app = MorpheusApplication(config_path=ctx.obj.get('config_path'))
        asyncio.run(app.run_server(host=host, port=port))
    except ConfigurationError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)
    except Exception as e:
        click.echo(f"Error starting server: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.pass_context
def validate(ctx):
    """Validate the Morpheus configuration."""
    try:
        config_manager = initialize_config(ctx.obj.get('config_path'))
        config = config_manager.get_config()
        warnings = config_manager.validate_config()

        click.echo("Configuration validation completed successfully!")
        click.echo(f"Configuration file: {config.config_file_path}")
        click.echo(f"Service: {config.observability.service_name}")
        click.echo(f"Environment: {config.observability.environment}")
        click.echo(f"Completion model: {config.completion.model}")

        if warnings:
            click.echo("\nWarnings:")
            for warning in warnings:
                click.echo(f"  - {warning}")
        else:
            click.echo("\nNo warnings found.")

    except ConfigurationError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.pass_context
def status(ctx):
    """Show configured sandboxes and agents."""
    try:
        config = initialize_config(ctx.obj.get('config_path')).get_config()
        container = ServiceContainer(config)

        click.echo("Morpheus Status")
        click.echo("===============")
        click.echo(f"Service: {config.observability.service_name}")
        click.echo(f"Version: {config.observability.service_version}")
        click.echo(f"Configuration: {config.config_file_path}")
        click.echo(f"Terminal sandbox: {container.terminal.sandbox_root}")
        click.echo(f"Editor sandbox: {container.editor.sandbox_root}")
        click.echo(f"Screenshots: {container.web.screenshot_dir}")

        click.echo(f"\nAgents ({len(container.registry)}):")
        for registration in container.registry.registrations():
            click.echo(f"  - {registration.name} ({registration.kind.value}): {registration.description}")

    except ConfigurationError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.option('--output', '-o', type=click.Path(), help='Output file path')
@click.pass_context
def export_config(ctx, output):
    """Export the current configuration."""
    try:
        config = initialize_config(ctx.obj.get('config_path')).get_config()
        config_dict = config.model_dump(exclude={"config_file_path"})
        # credentials never leave the process
        config_dict["tool"]["credentials"] = {name: "****" for name in config_dict["tool"]["credentials"]}

        if output:
            with open(output, 'w') as f:
                yaml.dump(config_dict, f, default_flow_style=False, indent=2)
            click.echo(f"Configuration exported to: {output}")
        else:
            click.echo(yaml.dump(config_dict, default_flow_style=False, indent=2))

    except ConfigurationError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.argument('message')
@click.option('--output-format', '-f', type=click.Choice(['json', 'yaml', 'text']), default='text', help='Output format')
@click.pass_context
def ask(ctx, message, output_format):
    """Route a single MESSAGE and print the result."""
    try:
        config = _bootstrap(ctx.obj.get('config_path'))
        result = asyncio.run(_ask_impl(config, message))
        _echo_result(result, output_format)
        if not result["success"]:
            sys.exit(2)
    except ConfigurationError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)


async def _ask_impl(config: MorpheusConfig, message: str) -> dict:
    container = ServiceContainer(config)
    try:
        result = await container.supervisor.dispatch(message)
    finally:
        await container.stop()
    return result.model_dump(mode="json")


def main():
    """Main entry point."""
    cli()


if __name__ == '__main__':
    main()
