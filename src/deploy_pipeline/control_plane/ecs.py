"""Amazon ECS control plane: task definition revisions and rolling service updates."""

from typing import Any, Dict, List, Optional

from deploy_pipeline.control_plane.base import (
    ControlPlane,
    DeploymentHandle,
    DeploymentRequest,
    DeploymentStatus,
)
from deploy_pipeline.revision.models import RevisionDescriptor
from deploy_pipeline.utils.errors import DeployError, DeployErrorKind, ErrorContext, error_handler
from deploy_pipeline.utils.logging import get_logger

logger = get_logger(__name__)

REVISION_TAG_KEY = 'deploy-pipeline:revision-id'
TERMINAL_ROLLOUT_STATES = {'COMPLETED', 'FAILED'}
DESCRIBE_TASKS_BATCH = 100


class EcsControlPlane(ControlPlane):
    """Control plane backed by ECS services."""

    def __init__(
        self,
        ecs_client,
        launch_type: str = 'FARGATE',
        network_mode: str = 'awsvpc',
        count_unknown_health: bool = True
    ):
        """Initialize ECS control plane.

        Args:
            ecs_client: boto3 ECS client
            launch_type: Compatibility requested for new task definitions
            network_mode: Task networking mode
            count_unknown_health: Count running tasks without a container health
                check (health ``UNKNOWN``) as healthy
        """
        self.ecs_client = ecs_client
        self.launch_type = launch_type
        self.network_mode = network_mode
        self.count_unknown_health = count_unknown_health

    def submit_revision(self, request: DeploymentRequest) -> DeploymentHandle:
        context = ErrorContext(
            stage="deploy",
            service_name=request.service_name,
            cluster_name=request.cluster_name,
            image=request.revision.image_uri,
            aws_service="ecs"
        )

        try:
            context.operation = "describe_service"
            previous_arn = self._describe_service(request.cluster_name, request.service_name)['taskDefinition']

            context.operation = "register_task_definition"
            task_definition_arn = self._register_task_definition(request.revision)

            context.operation = "update_service"
            response = self.ecs_client.update_service(
                cluster=request.cluster_name,
                service=request.service_name,
                taskDefinition=task_definition_arn,
                desiredCount=request.desired_count,
                forceNewDeployment=True
            )
        except DeployError:
            raise
        except Exception as e:
            raise error_handler.to_deploy_error(e, context) from e

        deployment_id = self._find_deployment_id(response.get('service', {}), task_definition_arn)

        logger.info(
            f"Service {request.service_name} updated to {task_definition_arn} "
            f"(deployment {deployment_id}, previous {previous_arn})"
        )

        return DeploymentHandle(
            handle_id=deployment_id,
            cluster_name=request.cluster_name,
            service_name=request.service_name,
            revision_arn=task_definition_arn,
            desired_count=request.desired_count,
            previous_revision_arn=previous_arn,
        )

    def get_status(self, handle: DeploymentHandle) -> DeploymentStatus:
        context = ErrorContext(
            stage="watch",
            service_name=handle.service_name,
            cluster_name=handle.cluster_name,
            operation="get_status",
            aws_service="ecs"
        )

        try:
            service = self._describe_service(handle.cluster_name, handle.service_name)
            deployments = service.get('deployments', [])
            ours = self._find_deployment(deployments, handle)
            primary = next((d for d in deployments if d.get('status') == 'PRIMARY'), None)

            previous_running = sum(
                d.get('runningCount', 0) for d in deployments if d is not ours
            )

            if ours is None:
                # Deployment no longer listed: the service moved on without it
                running, desired, rollout_state, terminal = 0, handle.desired_count, None, True
            else:
                running = ours.get('runningCount', 0)
                desired = ours.get('desiredCount', handle.desired_count)
                rollout_state = ours.get('rolloutState')
                terminal = rollout_state in TERMINAL_ROLLOUT_STATES

            healthy = self._count_healthy_tasks(handle) if running > 0 else 0
        except DeployError:
            raise
        except Exception as e:
            raise error_handler.to_deploy_error(e, context) from e

        events = service.get('events') or []

        return DeploymentStatus(
            desired_count=desired,
            running_count=running,
            healthy_count=healthy,
            last_event_timestamp=events[0].get('createdAt') if events else None,
            terminal=terminal,
            previous_running_count=previous_running,
            primary_revision_arn=primary.get('taskDefinition') if primary else None,
            rollout_state=rollout_state,
        )

    def build_task_definition(self, revision: RevisionDescriptor) -> Dict[str, Any]:
        """Translate a revision descriptor into RegisterTaskDefinition parameters."""
        limits = revision.resource_limits

        container: Dict[str, Any] = {
            'name': revision.container_name,
            'image': revision.image_uri,
            'essential': True,
            'memory': limits.memory,
            'environment': [
                {'name': name, 'value': value}
                for name, value in sorted(revision.environment.items())
            ],
        }
        if limits.memory_reservation is not None:
            container['memoryReservation'] = limits.memory_reservation
        if revision.port:
            container['portMappings'] = [{'containerPort': revision.port, 'protocol': 'tcp'}]

        params: Dict[str, Any] = {
            'family': revision.service_name,
            'containerDefinitions': [container],
            'requiresCompatibilities': [self.launch_type],
            'networkMode': self.network_mode,
            'cpu': str(limits.cpu),
            'memory': str(limits.memory),
            'tags': [{'key': REVISION_TAG_KEY, 'value': revision.revision_id}],
        }
        if revision.execution_role_arn:
            params['executionRoleArn'] = revision.execution_role_arn
        if revision.task_role_arn:
            params['taskRoleArn'] = revision.task_role_arn

        return params

    def _register_task_definition(self, revision: RevisionDescriptor) -> str:
        response = self.ecs_client.register_task_definition(**self.build_task_definition(revision))
        arn = response['taskDefinition']['taskDefinitionArn']
        logger.debug(f"Registered task definition {arn} for revision {revision.revision_id}")
        return arn

    def _describe_service(self, cluster_name: str, service_name: str) -> Dict[str, Any]:
        """Describe one service, raising SERVICE_NOT_FOUND when it is missing or inactive."""
        response = self.ecs_client.describe_services(cluster=cluster_name, services=[service_name])

        services = response.get('services', [])
        if not services or services[0].get('status') == 'INACTIVE':
            reasons = ', '.join(f.get('reason', 'unknown') for f in response.get('failures', []))
            raise DeployError(
                f"Service {service_name} not found in cluster {cluster_name}"
                + (f" ({reasons})" if reasons else ""),
                kind=DeployErrorKind.SERVICE_NOT_FOUND,
                context=ErrorContext(
                    stage="deploy", service_name=service_name, cluster_name=cluster_name
                )
            )
        return services[0]

    def _find_deployment_id(self, service: Dict[str, Any], task_definition_arn: str) -> str:
        for deployment in service.get('deployments', []):
            if deployment.get('status') == 'PRIMARY' and deployment.get('taskDefinition') == task_definition_arn:
                return deployment['id']
        return task_definition_arn

    def _find_deployment(
        self,
        deployments: List[Dict[str, Any]],
        handle: DeploymentHandle
    ) -> Optional[Dict[str, Any]]:
        by_id = next((d for d in deployments if d.get('id') == handle.handle_id), None)
        if by_id is not None:
            return by_id
        return next((d for d in deployments if d.get('taskDefinition') == handle.revision_arn), None)

    def _count_healthy_tasks(self, handle: DeploymentHandle) -> int:
        """Count running, healthy tasks of the handle's revision."""
        task_arns: List[str] = []
        paginator = self.ecs_client.get_paginator('list_tasks')
        for page in paginator.paginate(
            cluster=handle.cluster_name,
            serviceName=handle.service_name,
            desiredStatus='RUNNING'
        ):
            task_arns.extend(page.get('taskArns', []))

        accepted = {'HEALTHY', 'UNKNOWN'} if self.count_unknown_health else {'HEALTHY'}
        healthy = 0
        for start in range(0, len(task_arns), DESCRIBE_TASKS_BATCH):
            response = self.ecs_client.describe_tasks(
                cluster=handle.cluster_name,
                tasks=task_arns[start:start + DESCRIBE_TASKS_BATCH]
            )
            for task in response.get('tasks', []):
                if (task.get('taskDefinitionArn') == handle.revision_arn
                        and task.get('lastStatus') == 'RUNNING'
                        and task.get('healthStatus', 'UNKNOWN') in accepted):
                    healthy += 1

        return healthy
