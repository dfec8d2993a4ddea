"""Monitoring module used by examples/middleware-platform/infra-reconciler.yaml."""

from infra_reconciler.resources import ResourceDeclaration, count_index, fn, ref, var


def cpu_alarms(
    *,
    name: str,
    target: str,
    threshold: int = 80,
    counted: bool = True,
    replicas_var: str = "liberty_replicas",
) -> list[ResourceDeclaration]:
    """One CPU alarm per instance of *target*, switched by ``enable_monitoring``."""
    if counted:
        instance_id = fn("element", ref(f"{target}[*].id"), count_index())
        count = var(replicas_var)
    else:
        instance_id = ref(f"{target}.id")
        count = None

    return [
        ResourceDeclaration(
            type="aws_cloudwatch_metric_alarm",
            name=f"{name}_cpu",
            count=count,
            condition=var("enable_monitoring"),
            attributes={
                "metric_name": "CPUUtilization",
                "comparison": "GreaterThanThreshold",
                "threshold": threshold,
                "dimensions": {"InstanceId": instance_id},
            },
        )
    ]
