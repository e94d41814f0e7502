#!/usr/bin/env python3
"""
Kubelaunch - Main Entry Point

Thin command-line layer that:
1. Builds the launch configuration from flags and the environment
2. Configures logging
3. Runs the launch orchestrator and maps its outcome to an exit status
"""

import asyncio
import logging
import sys

import click

from kubelaunch.config.provider import DEFAULT_NAMESPACE, EnvConfigProvider, LaunchConfig
from kubelaunch.errors import LaunchError
from kubelaunch.logging_config import configure_logging
from kubelaunch.modules.orchestrator import LaunchOrchestrator
from kubelaunch.version import version_info

logger = logging.getLogger("kubelaunch")


@click.group()
def cli():
    """Run Kubernetes operators on the local machine."""


@cli.group()
def up():
    """Launch the operator."""


@up.command("local")
@click.option(
    "--kubeconfig",
    default="",
    help="The file path to kubernetes configuration file; defaults to $HOME/.kube/config",
)
@click.option(
    "--operator-flags",
    default="",
    help='The flags that the operator needs. Example: "--flag1 value1 --flag2=value2"',
)
@click.option(
    "--namespace",
    default=DEFAULT_NAMESPACE,
    show_default=True,
    help="The namespace where the operator watches for changes.",
)
@click.option("--go-ldflags", default="", help="Set Go linker options")
def local(kubeconfig: str, operator_flags: str, namespace: str, go_ldflags: str):
    """
    Launch the operator on the local machine.

    Go operators are built and run as a child process; watches-driven
    operators run in-process behind a local API proxy. The cluster is
    reached with the given kubeconfig.
    """
    settings = EnvConfigProvider().get_settings()
    configure_logging(settings.log_level)

    config = LaunchConfig(
        kubeconfig_path=kubeconfig,
        operator_flags=operator_flags,
        namespace=namespace,
        ldflags=go_ldflags or None,
    )
    orchestrator = LaunchOrchestrator(config, settings)

    try:
        status = asyncio.run(orchestrator.run())
    except LaunchError as e:
        logger.critical(str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted")
        sys.exit(0)
    sys.exit(status)


@cli.command()
def version():
    """Print version information."""
    for key, value in version_info().items():
        click.echo(f"{key}: {value}")


def main():
    cli()


if __name__ == "__main__":
    main()
