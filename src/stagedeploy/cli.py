import logging

import click
from rich.logging import RichHandler

from . import __version__
from .constants import (
    MODE_CONFIGURE_ONLY,
    MODE_DESTROY,
    MODE_DRY_RUN,
    MODE_FULL_APPLY,
    MODE_LAYERED_APPLY,
    MODE_REDEPLOY,
    MODE_VALIDATE,
)
from .core import DeployError, Orchestrator

logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(rich_tracebacks=True, show_level=False, show_path=False)],
)


def _configure_logging(verbose: bool, log_file):
    logger = logging.getLogger("stagedeploy")

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.setLevel(logging.DEBUG)
    else:
        logger.setLevel(logging.INFO)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
        logger.addHandler(file_handler)


def _run(ctx: click.Context, mode: str, **kwargs):
    try:
        orchestrator = Orchestrator(mode=mode, config_path=ctx.obj["config"], **kwargs)
    except DeployError as exc:
        raise click.ClickException(str(exc)) from exc

    raise SystemExit(orchestrator.run())


@click.group()
@click.version_option(__version__, prog_name="stagedeploy")
@click.option(
    "--config",
    required=False,
    type=click.Path(),
    help="Path to the YAML settings file. Defaults to .stagedeploy.yml in the current directory.",
)
@click.option("--verbose", is_flag=True, default=False, help="Enable verbose logging")
@click.option("--log-file", type=click.Path(), help="Path to log file")
@click.pass_context
def main(ctx, config, verbose, log_file):
    """Provision infrastructure with Terraform and configure it with Ansible, stage by stage."""
    _configure_logging(verbose, log_file)
    ctx.ensure_object(dict)
    ctx.obj["config"] = config


@main.command()
@click.pass_context
def deploy(ctx):
    """Apply all infrastructure, wait for the target and configure it, without prompts."""
    _run(ctx, MODE_FULL_APPLY)


@main.command("layered-deploy")
@click.option(
    "--dry-run",
    is_flag=True,
    default=False,
    help="Validate and plan every layer without applying changes.",
)
@click.option(
    "--skip-confirm",
    is_flag=True,
    default=False,
    help="Skip confirmation prompts between layers (use with caution).",
)
@click.pass_context
def layered_deploy(ctx, dry_run, skip_confirm):
    """Deploy layer by layer, confirming before each mutating stage."""
    if dry_run:
        _run(ctx, MODE_DRY_RUN)
    else:
        _run(ctx, MODE_LAYERED_APPLY, auto_approve=skip_confirm)


@main.command()
@click.option("--auto-approve", is_flag=True, default=False, help="Skip the confirmation prompt.")
@click.pass_context
def destroy(ctx, auto_approve):
    """Tear down all managed infrastructure."""
    _run(ctx, MODE_DESTROY, auto_approve=auto_approve)


@main.command()
@click.option("--skip-destroy", is_flag=True, default=False, help="Skip the destroy step (only deploy).")
@click.option("--skip-deploy", is_flag=True, default=False, help="Skip the deploy step (only destroy).")
@click.option("--auto-approve", is_flag=True, default=False, help="Skip confirmation prompts.")
@click.pass_context
def redeploy(ctx, skip_destroy, skip_deploy, auto_approve):
    """Destroy the infrastructure and deploy it again."""
    _run(
        ctx,
        MODE_REDEPLOY,
        auto_approve=auto_approve,
        skip_destroy=skip_destroy,
        skip_deploy=skip_deploy,
    )


@main.command()
@click.option("--host", required=False, help="Configure this address instead of the Terraform output.")
@click.option("--user", required=False, help="Remote user to connect as (required with --host).")
@click.pass_context
def configure(ctx, host, user):
    """Re-run configuration management against the current target."""
    _run(ctx, MODE_CONFIGURE_ONLY, host=host, user=user)


@main.command()
@click.pass_context
def validate(ctx):
    """Validate Terraform configuration and playbook syntax without deploying."""
    _run(ctx, MODE_VALIDATE)


if __name__ == "__main__":
    main()
