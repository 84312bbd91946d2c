"""Deployment trigger stage.

Tells the container service to replace its tasks. The service is always
forced onto a new deployment, so it re-pulls the image even when the task
definition still references a moving tag. With ``pin_image_tag`` a new
task definition revision pointing at the exact built tag is registered
first and the service is moved onto it.

Returns as soon as the API acknowledges; waiting is the stabilization
stage's job.
"""

from __future__ import annotations

from rollout.core.enums import Stage
from rollout.core.errors import RemoteCallError, TriggerRejected
from rollout.core.logging import get_logger
from rollout.deploy.context import StageContext
from rollout.deploy.tokens import BuiltToken, RolloutToken, issue_rollout

logger = get_logger(__name__)


def trigger_rollout(ctx: StageContext, token: BuiltToken) -> RolloutToken:
    """Force a new deployment of the service.

    Raises:
        TriggerRejected: The service update was refused.
    """
    if not isinstance(token, BuiltToken):
        raise TypeError("the rollout trigger requires the build stage's token")

    config = ctx.config
    containers = ctx.services.containers
    ctx.reporter.started(Stage.TRIGGER, f"force new deployment of {config.service}")

    try:
        task_definition = None
        if config.pin_image_tag:
            current = containers.describe_service(config.cluster, config.service)
            if not config.image_repository or not current.task_definition:
                raise TriggerRejected(
                    "pinning the image tag needs ROLLOUT_IMAGE_REPOSITORY and a service task definition",
                    reason="missing image repository",
                )
            task_definition = containers.register_image_revision(
                current.task_definition,
                config.container_name,
                f"{config.image_repository}:{token.image_tag}",
            )
        snapshot = containers.force_new_deployment(
            config.cluster, config.service, task_definition=task_definition
        )
    except RemoteCallError as exc:
        logger.error("trigger.rejected", service=config.service, error_code=exc.code)
        error = TriggerRejected(
            f"update of service {config.service} rejected: {exc.message}",
            reason=exc.code or exc.message,
            cause=exc,
        )
        error.with_context(run_id=config.run_id, service=config.service)
        raise error from exc

    primary = snapshot.primary_deployment
    deployment_id = primary.id if primary else None
    logger.info(
        "trigger.accepted",
        service=config.service,
        deployment_id=deployment_id,
        task_definition=task_definition or snapshot.task_definition,
    )
    ctx.reporter.succeeded(Stage.TRIGGER, f"deployment {deployment_id or 'unknown'} accepted")
    return issue_rollout(token, deployment_id=deployment_id)


__all__ = ["trigger_rollout"]
