"""Main CLI entry point."""

import sys
from typing import Dict, Iterable, Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from stack_deploy.config.models import DeployOptions
from stack_deploy.config.parser import Config, ConfigValidationError, parse_parameter_flags
from stack_deploy.deployments.progress import DeployEvent
from stack_deploy.orchestrator.builder import WorkGraphBuilder
from stack_deploy.orchestrator.orchestrator import (
    DeploymentRunResult,
    Orchestrator,
    always_confirm,
    load_stacks,
)
from stack_deploy.orchestrator.work_graph import NodeState
from stack_deploy.utils.aws_client import AWSClientManager
from stack_deploy.utils.errors import DeploymentError
from stack_deploy.utils.logging import setup_logging, get_logger

console = Console()
logger = get_logger(__name__)

STATE_STYLES = {
    NodeState.COMPLETED: "[green]✓ deployed[/green]",
    NodeState.FAILED: "[red]✗ failed[/red]",
    NodeState.SKIPPED: "[yellow]- skipped[/yellow]",
    NodeState.PENDING: "[dim]not started[/dim]",
    NodeState.RUNNING: "[dim]running[/dim]",
}

EVENT_STYLES = {
    DeployEvent.NODE_STARTED: "[cyan]▶[/cyan]",
    DeployEvent.NODE_COMPLETED: "[green]✓[/green]",
    DeployEvent.NODE_FAILED: "[red]✗[/red]",
    DeployEvent.NODE_SKIPPED: "[yellow]-[/yellow]",
    DeployEvent.SKIPPED: "[dim]=[/dim]",
    DeployEvent.CHANGE_SET_CREATED: "[cyan]•[/cyan]",
    DeployEvent.NO_CHANGES: "[dim]=[/dim]",
    DeployEvent.EXECUTION_STARTED: "[cyan]•[/cyan]",
    DeployEvent.EXECUTION_FINISHED: "[green]•[/green]",
    DeployEvent.ROLLBACK_STARTED: "[yellow]↺[/yellow]",
    DeployEvent.ROLLBACK_FINISHED: "[yellow]↺[/yellow]",
}


@click.group()
@click.option('--profile', help='AWS profile to use')
@click.option('--region', help='AWS region')
@click.option('--log-level', default='info', type=click.Choice(['debug', 'info', 'warning', 'error']))
@click.pass_context
def cli(ctx, profile, region, log_level):
    """CloudFormation stack deployment engine."""
    ctx.ensure_object(dict)
    ctx.obj['profile'] = profile
    ctx.obj['region'] = region
    ctx.obj['log_level'] = log_level

    setup_logging(log_level)


def load_config(config_path: str = "stack-deploy.yaml") -> Config:
    """Load and validate configuration file."""
    try:
        return Config(config_path).load()
    except FileNotFoundError:
        console.print(f"[red]Error:[/red] Configuration file not found: {config_path}")
        sys.exit(1)
    except ConfigValidationError as e:
        console.print("[red]Configuration validation failed:[/red]\n")
        console.print(str(e))
        sys.exit(1)


def parse_tag_flags(values: Iterable[str]) -> Dict[str, str]:
    """Parse ``Key=Value`` tag flags."""
    tags = {}
    for value in values:
        key, sep, tag_value = value.partition('=')
        if not sep or not key:
            raise click.BadParameter(f"Tags must be in the form Key=Value: {value}", param_hint='--tags')
        tags[key] = tag_value
    return tags


def build_options(
    base: DeployOptions,
    parameters: Iterable[str] = (),
    tags: Iterable[str] = (),
    notification_arns: Iterable[str] = (),
    role_arn: Optional[str] = None,
    force: bool = False,
    rollback: Optional[bool] = None,
    method: Optional[str] = None,
    change_set_name: Optional[str] = None,
    execute: bool = True,
    execute_existing: bool = False,
    concurrency: Optional[int] = None,
    asset_parallelism: Optional[int] = None,
    prebuild: Optional[bool] = None,
    outputs_file: Optional[str] = None,
    force_publish: bool = False,
) -> DeployOptions:
    """Apply command line overrides to the configured run options.

    The result is re-validated so flag combinations get the same checks
    as the configuration file.
    """
    data = base.model_dump()

    flag_parameters = parse_parameter_flags(parameters)
    for bucket, values in flag_parameters.items():
        data['parameters'].setdefault(bucket, {}).update(values)

    flag_tags = parse_tag_flags(tags)
    if flag_tags:
        data['tags'] = {**(data['tags'] or {}), **flag_tags}

    notification_arns = list(notification_arns)
    if notification_arns:
        data['notification_arns'] = (data['notification_arns'] or []) + notification_arns

    if role_arn:
        data['role_arn'] = role_arn
    if force:
        data['force_deployment'] = True
    if force_publish:
        data['force_asset_publishing'] = True
    if rollback is not None:
        data['rollback'] = rollback
    if prebuild is not None:
        data['prebuild_assets'] = prebuild
    if outputs_file:
        data['outputs_file'] = outputs_file

    method_data = data['deployment_method']
    if method:
        method_data['method'] = method
    if change_set_name:
        method_data['change_set_name'] = change_set_name
    if not execute:
        method_data['execute'] = False
    if execute_existing:
        method_data['execute_existing_change_set'] = True

    if concurrency is not None:
        data['concurrency']['stack'] = concurrency
    if asset_parallelism is not None:
        data['concurrency']['asset_publish'] = asset_parallelism

    return DeployOptions(**data)


class ConsoleProgress:
    """Prints progress events as they arrive."""

    def __call__(self, subject: str, event: DeployEvent, message: str) -> None:
        marker = EVENT_STYLES.get(event, '•')
        suffix = f" [dim]{message}[/dim]" if message else ''
        console.print(f"{marker} {subject}: {event.value.replace('_', ' ')}{suffix}")


def render_result(result: DeploymentRunResult) -> None:
    """Print the per-stack result table."""
    table = Table(title="Deployment Results")
    table.add_column("Stack", style="cyan")
    table.add_column("Status")
    table.add_column("Outputs / Error")

    for stack in result.stacks:
        status = STATE_STYLES.get(stack.state, stack.state.value)
        if stack.is_success() and stack.no_op:
            status = "[green]✓ no changes[/green]"

        if stack.error is not None:
            detail = f"[red]{stack.error.message}[/red]"
        elif stack.outputs:
            detail = "\n".join(f"{key} = {value}" for key, value in sorted(stack.outputs.items()))
        else:
            detail = "[dim]-[/dim]"
        table.add_row(stack.stack_name, status, detail)

    console.print(table)


@cli.command()
@click.option('--config', default='stack-deploy.yaml', help='Path to configuration file')
@click.option('--stack', 'stacks', multiple=True, help='Stack to deploy (repeatable, default: all)')
@click.option('--parameters', multiple=True,
              help='Parameter override, KEY=VALUE or STACK:KEY=VALUE (repeatable)')
@click.option('--tags', multiple=True, help='Stack tag, KEY=VALUE (repeatable)')
@click.option('--notification-arns', multiple=True, help='SNS topic ARN for stack events (repeatable)')
@click.option('--role-arn', help='IAM role CloudFormation assumes while deploying')
@click.option('--force', is_flag=True, help='Deploy even if nothing changed')
@click.option('--force-publish', is_flag=True, help='Publish assets even if they already exist')
@click.option('--rollback/--no-rollback', default=None, help='Roll back stacks on failure')
@click.option('--method', type=click.Choice(['change-set', 'direct', 'hotswap']), help='Deployment method')
@click.option('--change-set-name', help='Name of the change set to create or execute')
@click.option('--execute/--no-execute', default=True, help='Execute the change set after creating it')
@click.option('--execute-existing', is_flag=True, help='Execute the named, already created change set')
@click.option('--concurrency', type=click.IntRange(min=1), help='Maximum stacks deployed at once')
@click.option('--asset-parallelism', type=click.IntRange(min=1), help='Maximum assets published at once')
@click.option('--prebuild/--no-prebuild', default=None, help='Build all assets before deploying stacks')
@click.option('--outputs-file', help='Write stack outputs to this JSON file')
@click.option('--yes', '-y', is_flag=True, help='Do not ask before rolling back paused stacks')
@click.pass_context
def deploy(ctx, config, stacks, parameters, tags, notification_arns, role_arn, force, force_publish,
           rollback, method, change_set_name, execute, execute_existing, concurrency, asset_parallelism,
           prebuild, outputs_file, yes):
    """Deploy stacks to AWS CloudFormation."""
    cfg = load_config(config)

    try:
        options = build_options(
            cfg.options,
            parameters=parameters,
            tags=tags,
            notification_arns=notification_arns,
            role_arn=role_arn,
            force=force,
            rollback=rollback,
            method=method,
            change_set_name=change_set_name,
            execute=execute,
            execute_existing=execute_existing,
            concurrency=concurrency,
            asset_parallelism=asset_parallelism,
            prebuild=prebuild,
            outputs_file=outputs_file,
            force_publish=force_publish,
        )
    except (ValueError, ConfigValidationError) as e:
        console.print(f"[red]Invalid options:[/red] {e}")
        sys.exit(1)

    confirm = always_confirm if yes else (lambda question: click.confirm(question, default=True))

    try:
        client_manager = AWSClientManager(profile=ctx.obj.get('profile'), region=ctx.obj.get('region'))
        selected = load_stacks(cfg, client_manager, list(stacks) or None)

        console.print(Panel.fit(
            f"[bold]Deploying {len(selected)} stack(s)[/bold]\n"
            f"Method: {options.deployment_method.method}\n"
            f"Rollback: {'enabled' if options.rollback else 'disabled'}\n"
            f"Concurrency: {options.concurrency.stack}",
            title="Deployment Configuration",
            border_style="cyan"
        ))

        orchestrator = Orchestrator(
            client_manager,
            options=options,
            settings=cfg.settings,
            confirm=confirm,
            progress_callback=ConsoleProgress()
        )
        result = orchestrator.deploy(selected)
    except ConfigValidationError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        sys.exit(1)
    except DeploymentError as e:
        console.print(f"[red]Deployment error:[/red]\n{e.to_user_message()}")
        sys.exit(1)

    console.print()
    render_result(result)

    if not result.is_success():
        if result.first_error is not None:
            console.print(f"\n[red]Deployment failed:[/red]\n{result.first_error.to_user_message()}")
        sys.exit(1)


@cli.command()
@click.option('--config', default='stack-deploy.yaml', help='Path to configuration file')
@click.option('--stack', 'stacks', multiple=True, help='Stack to include (repeatable, default: all)')
@click.option('--no-prebuild', is_flag=True, help='Schedule asset builds just before their stack')
@click.pass_context
def graph(ctx, config, stacks, no_prebuild):
    """Print the work graph in DOT format."""
    cfg = load_config(config)
    try:
        client_manager = AWSClientManager(profile=ctx.obj.get('profile'), region=ctx.obj.get('region'))
        selected = load_stacks(cfg, client_manager, list(stacks) or None)
        work_graph = WorkGraphBuilder(prebuild_assets=not no_prebuild).build(selected)
        work_graph.validate()
    except ConfigValidationError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        sys.exit(1)
    except DeploymentError as e:
        console.print(f"[red]Error:[/red]\n{e.to_user_message()}")
        sys.exit(1)

    click.echo(str(work_graph))


@cli.command()
@click.option('--config', default='stack-deploy.yaml', help='Path to configuration file')
def validate(config):
    """Validate the configuration file and templates."""
    cfg = load_config(config)

    table = Table(title="Stacks")
    table.add_column("Stack", style="cyan")
    table.add_column("Template")
    table.add_column("Depends on")
    table.add_column("Assets", justify="right")

    errors = []
    for stack in cfg.stacks:
        try:
            cfg.load_template(stack)
        except ConfigValidationError as e:
            errors.append(str(e))
        table.add_row(stack.name, stack.template, ", ".join(stack.depends_on) or "-", str(len(stack.assets)))

    console.print(table)
    if errors:
        for error in errors:
            console.print(f"[red]✗[/red] {error}")
        sys.exit(1)
    console.print("[green]✓ Configuration is valid[/green]")


if __name__ == '__main__':
    cli()
