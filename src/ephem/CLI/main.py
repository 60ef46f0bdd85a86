"""
Command Line Interface for ephem.
"""
import os
import threading

import click

from ..config import get_settings
from ..MANAGERS.lifecycle_controller import LifecycleController
from ..MODELS.errors import EphemError, SpecParseError
from ..PARSERS.spec_parser import SpecParser
from ..REGISTRY.provider_registry import UNSUPPORTED, default_registry
from ..RUNTIME.docker_gateway import DockerGateway
from ..UTILS.log_config import configure_logging


@click.group()
@click.option('--log-level', default=None, help='Log level (default: EPHEM_LOG_LEVEL or INFO)')
@click.option('--log-format', type=click.Choice(['console', 'json']), default=None, help='Log output format')
@click.pass_context
def cli(ctx, log_level, log_format):
    """
    Ephem - disposable service containers for tests.

    Start a registered service or a YAML spec, print its coordinates and
    tear it down again.
    """
    settings = get_settings()
    configure_logging(log_level or settings.log_level, log_format or settings.log_format)
    ctx.ensure_object(dict)
    ctx.obj.setdefault('registry', default_registry())
    ctx.obj.setdefault('gateway_factory', DockerGateway)


@cli.command()
@click.pass_context
def providers(ctx):
    """List supported services."""
    registry = ctx.obj['registry']
    click.echo(f"{'SERVICE':15} {'DEFAULT TAG':15} DESCRIPTION")
    click.echo("-" * 60)
    for entry in registry.entries():
        click.echo(f"{entry.name:15} {entry.default_tag:15} {entry.description}")


@cli.command()
@click.argument('name', required=False)
@click.option('--file', '-f', 'spec_file', default=None, help='YAML spec file instead of a service name')
@click.option('--tag', '-t', default=None, help='Image tag (default: provider default)')
@click.option('--init-script', default=None, help='Init script applied after startup (providers that support it)')
@click.option('--attempts', type=click.IntRange(min=1), default=None, help='Startup attempts')
@click.option('--detach', '-d', is_flag=True, help='Stop right after printing coordinates')
@click.pass_context
def up(ctx, name, spec_file, tag, init_script, attempts, detach):
    """Start a service and print its connection coordinates."""
    registry = ctx.obj['registry']

    if spec_file:
        if not os.path.exists(spec_file):
            raise click.ClickException(f"{spec_file} not found.")
        try:
            definition = SpecParser().parse(spec_file)
        except SpecParseError as e:
            raise click.ClickException(f"{spec_file}: {e}")
    elif name:
        entry = registry.resolve(name)
        if entry is UNSUPPORTED:
            raise click.ClickException(
                f"Unsupported service '{name}'. Supported: {', '.join(registry.names()) or 'none'}"
            )
        options = {"init_script": init_script} if init_script else {}
        try:
            definition = entry.create(tag, **options)
        except TypeError as e:
            raise click.ClickException(f"{entry.name} does not accept these options: {e}")
    else:
        raise click.UsageError("Give a service NAME or --file")

    controller = LifecycleController(ctx.obj['gateway_factory']())
    cancel = threading.Event()
    try:
        handle = controller.launch(definition, attempts=attempts, cancel_event=cancel)
        click.echo(f"{definition.name} ready on {handle.get_host_address()}")
        for container_port, host_port in sorted(handle.ports.items()):
            click.echo(f"  {container_port:>6} -> {host_port}")

        if not detach:
            click.echo("Running... Press Ctrl+C to stop.")
            # Keep main thread alive and wait for interrupt
            while not cancel.wait(1):
                pass
    except KeyboardInterrupt:
        cancel.set()
        click.echo("\nStopping...")
    except EphemError as e:
        raise click.ClickException(str(e))
    finally:
        controller.stop()


def main():
    """
    Main entry point for the CLI.
    """
    cli(obj={})


if __name__ == '__main__':
    main()
