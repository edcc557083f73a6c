"""Concierge CLI: deploy the Nix configuration repo to this machine."""

import logging
import os
import sys

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel

from concierge import __version__
from concierge.errors import ConciergeError, PreconditionError, format_error_chain

console = Console()
err_console = Console(stderr=True)


def configure_logging(verbose: bool) -> None:
    level_name = "DEBUG" if verbose else os.environ.get("CONCIERGE_LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )
    logging.getLogger("git").setLevel(logging.WARNING)


def report_error(exc: ConciergeError) -> None:
    chain = format_error_chain(exc)
    err_console.print(f"[bold red]Error:[/] {escape(chain[0])}")
    for cause in chain[1:]:
        err_console.print(f"  [red]caused by:[/] {escape(cause)}")


@click.command()
@click.version_option(version=__version__)
@click.option("--force-eval", "-e", is_flag=True, help="Force re-evaluation by tagging flake.nix")
@click.option("--update", "-u", is_flag=True, help="Update packages to latest versions")
@click.option("--fallback", "-f", is_flag=True, help="Use fallback option to build from source")
@click.option("--show-trace", "-s", is_flag=True, help="Show trace when evaluating")
@click.option("--update-input", "-i", default=None, help="Update a specific flake input")
@click.option("--config-path", type=click.Path(file_okay=False), default=None, help="Config source dir")
@click.option("--install-path", type=click.Path(file_okay=False), default=None, help="Install dir")
@click.option("--repo-url", default=None, help="Remote the config dir is a checkout of")
@click.option("--branch", default=None, help="Branch of the config repo to track")
@click.option("--settings-file", type=click.Path(dir_okay=False), default=None, help="YAML settings file")
@click.option("--skip-nix-install", is_flag=True, help="Do not install Nix when it is missing")
@click.option("--no-convert-services", is_flag=True, help="Skip compose2nix conversion")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
def main(
    force_eval: bool,
    update: bool,
    fallback: bool,
    show_trace: bool,
    update_input: str | None,
    config_path: str | None,
    install_path: str | None,
    repo_url: str | None,
    branch: str | None,
    settings_file: str | None,
    skip_nix_install: bool,
    no_convert_services: bool,
    verbose: bool,
):
    """Concierge: deploy a Nix flake configuration to this machine.

    Syncs the config dir to the install dir, builds and applies it with the
    platform's rebuild command, then brings updated lock files back.
    """
    configure_logging(verbose)
    try:
        deploy(
            {
                "force_evaluation": force_eval or None,
                "update": update or None,
                "fallback": fallback or None,
                "show_trace": show_trace or None,
                "update_input": update_input,
                "config_path": config_path,
                "install_path": install_path,
                "repo_url": repo_url,
                "branch": branch,
                "convert_services": False if no_convert_services else None,
            },
            settings_file=settings_file,
            install_missing_nix=not skip_nix_install,
        )
    except ConciergeError as e:
        report_error(e)
        sys.exit(1)


def deploy(overrides: dict, settings_file: str | None = None, install_missing_nix: bool = True) -> None:
    from concierge.deploy.config_repo import ConfigRepoReconciler
    from concierge.deploy.orchestrator import Deployer
    from concierge.deploy.platforms import detect_platform
    from concierge.deploy.runner import ProcessRunner
    from concierge.nix_install import install_nix
    from concierge.settings import load_settings

    kind = detect_platform()
    settings = load_settings(overrides, settings_file=settings_file, platform_kind=kind)

    console.print(f"\n[bold blue]Concierge[/] — Deploying {settings.config_path} on {settings.hostname}\n")

    reconciler = plan = None
    if settings.repo_url:
        reconciler = ConfigRepoReconciler(settings)
        reconciler.ensure_checkout()
        plan = reconciler.plan()
        console.print(f"  Config repo: {plan.reason}")
        reconciler.prepare(plan)

    if not settings.manifest_file.is_file():
        raise PreconditionError(
            f"{settings.manifest_file.name} not found in expected location: {settings.manifest_file}"
        )

    runner = ProcessRunner()
    if install_missing_nix:
        install_nix(runner, kind)

    report = Deployer(settings, runner=runner, detect=lambda: kind).deploy()

    if reconciler is not None:
        sha = reconciler.finalize(plan)
        if sha:
            console.print(f"  [green]Pushed lock file update[/] {sha[:12]}")

    console.print(Panel(report.summary(), title="Deployment Result"))


if __name__ == "__main__":
    main()
