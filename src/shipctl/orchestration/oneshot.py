"""
One-off ECS task execution.

Launches a single task with an overridden command, follows it until ECS
reports it STOPPED and returns the container's exit code. SIGINT/SIGTERM
received while waiting ask ECS to stop the task; the wait itself still ends
only when the task is reported STOPPED.
"""
import queue
import signal
import threading
import time
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Any, List, Optional, Sequence

from botocore.exceptions import ClientError

from shipctl.aws.revisions import specify_revision
from shipctl.aws.services import DEFAULT_POLL_INTERVAL, ServiceUpdater
from shipctl.aws.task_definitions import TaskDefinitionBuilder
from shipctl.exceptions import LaunchError, NotFoundError, RemoteError, ValidationError
from shipctl.utils.decorators import format_elapsed

logger = logging.getLogger(__name__)

STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM)


@dataclass
class TaskStatus:
    """Terminal state of a one-shot task."""
    exit_code: int = 0
    stopped_reason: str = ""


@contextmanager
def interrupt_signals(interrupts: Optional[queue.SimpleQueue] = None,
                      signals: Sequence[int] = STOP_SIGNALS):
    """Route ``signals`` into a ``queue.SimpleQueue`` for the duration of the block.

    The handler only calls ``put_nowait``, which is reentrant and therefore
    safe while the main thread is blocked in ``get`` on the same queue.
    Previous handlers are restored on exit. Outside the main thread no handler
    can be installed and the queue is only fed by its owner.
    """
    interrupts = interrupts if interrupts is not None else queue.SimpleQueue()

    def handler(signum, frame):
        interrupts.put_nowait(signum)

    installed = {}
    if threading.current_thread() is threading.main_thread():
        for sig in signals:
            installed[sig] = signal.signal(sig, handler)

    try:
        yield interrupts
    finally:
        for sig, previous in installed.items():
            signal.signal(sig, previous if previous is not None else signal.SIG_DFL)


def _failure_reasons(response: Dict[str, Any]) -> List[str]:
    return [f.get('reason', 'unknown') for f in response.get('failures', [])]


class OneshotRunner:
    """Runs one ECS task to completion."""

    STARTED_BY = "shipctl oneshot"

    def __init__(self, ecs_client, poll_interval: float = DEFAULT_POLL_INTERVAL):
        self.ecs_client = ecs_client
        self.poll_interval = poll_interval
        self.builder = TaskDefinitionBuilder(ecs_client)
        self.updater = ServiceUpdater(ecs_client, poll_interval)

    def resolve_task_definition(self, cluster: str, taskdef_name: Optional[str] = None,
                                service_name: Optional[str] = None,
                                revision: int = 0) -> Dict[str, Any]:
        """Find the task definition to run, by family name or by service."""
        if not cluster:
            raise ValidationError("--cluster is required")
        if not taskdef_name and not service_name:
            raise ValidationError("--taskdef-name or --service-name is required")
        if taskdef_name and service_name:
            raise ValidationError("--taskdef-name and --service-name are mutually exclusive")

        if taskdef_name:
            arn = self.builder.describe_task_definition(taskdef_name)['taskDefinitionArn']
        else:
            arn = self.updater.describe_service(cluster, service_name)['taskDefinition']

        arn = specify_revision(revision, arn)
        return self.builder.describe_task_definition(arn)

    def launch(self, cluster: str, task_definition: Dict[str, Any],
               command: Sequence[str]) -> Dict[str, Any]:
        """Start one task, overriding the command of the first container."""
        if not command:
            raise ValidationError("COMMAND is required")

        container_name = task_definition['containerDefinitions'][0]['name']
        try:
            response = self.ecs_client.run_task(
                cluster=cluster,
                taskDefinition=task_definition['taskDefinitionArn'],
                overrides={
                    'containerOverrides': [
                        {
                            'name': container_name,
                            'command': list(command),
                        }
                    ]
                },
                count=1,
                startedBy=self.STARTED_BY
            )
        except ClientError as e:
            logger.error(f"Failed to run task {task_definition['taskDefinitionArn']}: {e}")
            raise

        if response.get('failures'):
            raise LaunchError("failed to runTask", _failure_reasons(response))
        if not response.get('tasks'):
            raise LaunchError("failed to runTask: no task was started")

        task = response['tasks'][0]
        logger.info(f"Started task {task['taskArn']}")
        return task

    def describe_task(self, task: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = self.ecs_client.describe_tasks(
                cluster=task['clusterArn'],
                tasks=[task['taskArn']]
            )
        except ClientError as e:
            logger.error(f"Failed to describe task {task['taskArn']}: {e}")
            raise

        if response.get('failures'):
            raise RemoteError("failed to describeTasks", _failure_reasons(response))
        if not response.get('tasks'):
            raise NotFoundError(f"task {task['taskArn']} is not found")

        return response['tasks'][0]

    def stop_task(self, task: Dict[str, Any]) -> bool:
        """Ask ECS to stop the task. Errors are logged, never raised."""
        try:
            self.ecs_client.stop_task(
                cluster=task['clusterArn'],
                task=task['taskArn'],
                reason="Interrupted by shipctl oneshot"
            )
        except ClientError as e:
            # The task may already be on its way out
            logger.warning(f"Failed to stop task {task['taskArn']}: {e}")
            return False
        return True

    def await_completion(self, task: Dict[str, Any], sink,
                         interrupt: Optional[queue.SimpleQueue] = None) -> TaskStatus:
        """Wait for the task to stop, relaying the first interrupt as a stop request."""
        with interrupt_signals(interrupt) as interrupted:
            start = time.monotonic()
            next_tick = start + self.poll_interval
            label = "running"
            stop_requested = False

            while True:
                timeout = max(0.0, next_tick - time.monotonic())
                try:
                    signum = interrupted.get(timeout=timeout)
                except queue.Empty:
                    signum = None

                if signum is not None:
                    logger.info(f"Received {signal.Signals(signum).name}")
                    if not stop_requested:
                        self.stop_task(task)
                        sink.log("send stop signal\n")
                        stop_requested = True
                        label = "stopping"
                    continue

                next_tick += self.poll_interval
                current = self.describe_task(task)

                elapsed = format_elapsed(time.monotonic() - start)
                sink.log(f"still {label}... [{elapsed}]\n")

                if current.get('lastStatus') == 'STOPPED':
                    return self._status_of(current)

    def run(self, cluster: str, task_definition: Dict[str, Any], command: Sequence[str],
            sink, interrupt: Optional[queue.SimpleQueue] = None) -> TaskStatus:
        """Launch the task and wait for it to stop."""
        task = self.launch(cluster, task_definition, command)
        sink.log("task started\n")
        return self.await_completion(task, sink, interrupt)

    @staticmethod
    def _status_of(task: Dict[str, Any]) -> TaskStatus:
        containers = task.get('containers', [])
        overrides = task.get('overrides', {}).get('containerOverrides', [])
        target = overrides[0]['name'] if overrides else None

        container = next((c for c in containers if c.get('name') == target), None)
        if container is None and containers:
            container = containers[0]

        exit_code = container.get('exitCode') if container else None
        return TaskStatus(
            exit_code=int(exit_code) if exit_code is not None else 0,
            stopped_reason=task.get('stoppedReason', ''),
        )
