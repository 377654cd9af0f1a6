# cli.py
import logging

import click
from botocore.exceptions import BotoCoreError, ClientError

from shipctl import __version__
from shipctl.aws.clients import get_ecr_client, get_ecs_client
from shipctl.aws.images import DEFAULT_TAG, parse_image_selectors
from shipctl.config.settings import HISTORY_BACKENDS, get_settings
from shipctl.exceptions import ShipctlError
from shipctl.notify import Notifier
from shipctl.orchestration.deploy import Deployer, require_options
from shipctl.orchestration.oneshot import OneshotRunner
from shipctl.orchestration.rollback import RollbackManager
from shipctl.state.history import HistoryStoreFactory

logger = logging.getLogger(__name__)

WORKFLOW_ERRORS = (ShipctlError, ClientError, BotoCoreError)

cluster_option = click.option("--cluster", default="", help="ECS cluster name")
service_option = click.option("--service-name", default="", help="ECS service name")
backend_option = click.option(
    "--backend",
    type=click.Choice(HISTORY_BACKENDS, case_sensitive=False),
    default=None,
    help="Backend type of the deployment history store"
)
slack_option = click.option("--slack-webhook-url", default=None, help="Slack incoming webhook URL")


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def _notifier(cluster: str, service_name: str, slack_webhook_url=None) -> Notifier:
    settings = get_settings()
    return Notifier(
        cluster,
        service_name,
        slack_webhook_url=slack_webhook_url or settings.slack_webhook_url,
        username=settings.slack_username,
    )


@click.group()
@click.version_option(__version__, prog_name="shipctl")
def cli():
    """deploy tool for Amazon ECS services"""
    _configure_logging(get_settings().log_level)


@cli.command()
@cluster_option
@service_option
@click.option("--revision", type=int, default=0, help="Revision of the ECS task definition to deploy from")
@click.option("--tag", default=DEFAULT_TAG, show_default=True, help="Base tag of ECR images")
@click.option("--image", "images", multiple=True, metavar="REPOSITORY:TAG",
              help="Base tag for one ECR repository (repeatable)")
@backend_option
@slack_option
def deploy(cluster, service_name, revision, tag, images, backend, slack_webhook_url):
    """Promote images, register a new revision and roll the service"""
    settings = get_settings()
    notifier = _notifier(cluster, service_name, slack_webhook_url)

    try:
        require_options(cluster=cluster, service_name=service_name)
        selectors = parse_image_selectors(images)
        settings.require_region()

        history = HistoryStoreFactory.create(backend, cluster, service_name, settings=settings)
        deployer = Deployer(
            get_ecs_client(),
            get_ecr_client(),
            history,
            notifier,
            poll_interval=settings.poll_interval,
            first_container_only=settings.legacy_single_container,
        )
        deployer.deploy(cluster, service_name, revision=revision, base_tag=tag, selectors=selectors)
    except WORKFLOW_ERRORS as e:
        notifier.fail(f"failed to deploy. cluster: {cluster}, serviceName: {service_name}\n")
        raise click.ClickException(str(e))


@cli.command()
@cluster_option
@service_option
@backend_option
@slack_option
def rollback(cluster, service_name, backend, slack_webhook_url):
    """Return the service to the previously recorded revision"""
    settings = get_settings()
    notifier = _notifier(cluster, service_name, slack_webhook_url)

    try:
        require_options(cluster=cluster, service_name=service_name)
        settings.require_region()

        history = HistoryStoreFactory.create(backend, cluster, service_name, settings=settings)
        manager = RollbackManager(
            get_ecs_client(),
            history,
            notifier,
            poll_interval=settings.poll_interval,
        )
        manager.rollback(cluster, service_name)
    except WORKFLOW_ERRORS as e:
        notifier.fail(f"failed to rollback. cluster: {cluster}, serviceName: {service_name}\n")
        raise click.ClickException(str(e))


@cli.command(context_settings={"ignore_unknown_options": True, "allow_interspersed_args": False})
@cluster_option
@click.option("--taskdef-name", default="", help="ECS task definition name")
@service_option
@click.option("--revision", type=int, default=0, help="Revision of the ECS task definition")
@click.argument("command", nargs=-1, type=click.UNPROCESSED)
@click.pass_context
def oneshot(ctx, cluster, taskdef_name, service_name, revision, command):
    """Run COMMAND once in a new task and exit with its exit code"""
    settings = get_settings()
    notifier = Notifier(cluster, taskdef_name or service_name)

    try:
        if not command:
            raise click.UsageError("COMMAND is required")
        settings.require_region()

        runner = OneshotRunner(get_ecs_client(), poll_interval=settings.poll_interval)
        task_def = runner.resolve_task_definition(
            cluster,
            taskdef_name=taskdef_name or None,
            service_name=service_name or None,
            revision=revision,
        )
        status = runner.run(cluster, task_def, command, notifier)
    except WORKFLOW_ERRORS as e:
        notifier.log(f"error: {e}\n")
        raise click.ClickException(str(e))

    if status.stopped_reason:
        notifier.log(f"task stopped: {status.stopped_reason}\n")
    ctx.exit(status.exit_code)


@cli.command()
@cluster_option
@service_option
@backend_option
def history(cluster, service_name, backend):
    """Show the recorded deployment history, oldest first"""
    settings = get_settings()

    try:
        require_options(cluster=cluster, service_name=service_name)
        settings.require_region()

        store = HistoryStoreFactory.create(backend, cluster, service_name, settings=settings)
        records = store.pull()
    except WORKFLOW_ERRORS as e:
        raise click.ClickException(str(e))

    if not records:
        click.echo(f"No deployment history for {cluster}/{service_name}")
        return

    click.echo(f"{'REVISION':<10}{'STATUS':<10}CAUSE")
    for record in records:
        click.echo(f"{record.revision:<10}{record.status.name:<10}{record.cause}")


def main():
    cli()


if __name__ == "__main__":
    main()
