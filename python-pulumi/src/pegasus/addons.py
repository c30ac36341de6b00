"""Helm values producers for the cluster add-ons.

Each producer receives the cluster context and returns one fragment, a list of
fragments, or a coroutine resolving to them. The add-on name is always the
top-level key of the generated values so the bootloader chart can pass the
subtree straight to the add-on's chart.
"""

from __future__ import annotations

import typing

import pegasus
from pegasus.fragments import ConfigFragment

if typing.TYPE_CHECKING:
    import collections.abc

    from pegasus.resolver import Producer

KARPENTER_INSTANCE_TYPES = ["t3.medium", "t3.large"]
INGRESS_SSL_POLICY = "ELBSecurityPolicy-FS-1-2-Res-2020-10"


def _service_account_annotations(role_arn: str) -> dict[str, typing.Any]:
    return {"annotations": {pegasus.ROLE_ARN_ANNOTATION: role_arn}}


async def aws_load_balancer_controller(context: pegasus.ClusterContext) -> ConfigFragment:
    name = str(pegasus.AddOns.AWS_LOAD_BALANCER_CONTROLLER)
    role_arn = await context.role_arn(name)
    vpc_id = await context.identifier(pegasus.Identifiers.VPC_ID, producer=name)

    return ConfigFragment(
        name=name,
        content={
            name: {
                "clusterName": context.cluster_name,
                "region": context.region,
                "serviceAccount": _service_account_annotations(role_arn),
                "vpcId": vpc_id,
            },
        },
    )


async def aws_ebs_csi_driver(context: pegasus.ClusterContext) -> ConfigFragment:
    name = str(pegasus.AddOns.AWS_EBS_CSI_DRIVER)
    role_arn = await context.role_arn(name)

    return ConfigFragment(
        name=name,
        content={
            name: {
                "controller": {
                    "serviceAccount": _service_account_annotations(role_arn),
                },
            },
        },
    )


def amazon_cloudwatch_observability(context: pegasus.ClusterContext) -> ConfigFragment:
    name = str(pegasus.AddOns.AMAZON_CLOUDWATCH_OBSERVABILITY)

    return ConfigFragment(
        name=name,
        content={
            name: {
                "clusterName": context.cluster_name,
                "region": context.region,
            },
        },
    )


async def karpenter(context: pegasus.ClusterContext) -> ConfigFragment:
    name = str(pegasus.AddOns.KARPENTER)
    role_arn = await context.role_arn(name)

    return ConfigFragment(
        name=name,
        content={
            name: {
                "settings": {
                    "clusterName": context.cluster_name,
                },
                "serviceAccount": {
                    "name": f"{name}-sa",
                    **_service_account_annotations(role_arn),
                },
                "defaultProvisioner": {
                    "requirements": [
                        {
                            "key": "node.kubernetes.io/instance-type",
                            "operator": "In",
                            "values": list(KARPENTER_INSTANCE_TYPES),
                        },
                    ],
                },
            },
        },
    )


async def ingress_nginx(context: pegasus.ClusterContext) -> ConfigFragment:
    name = str(pegasus.AddOns.INGRESS_NGINX)
    certificate_arn = await context.identifier(pegasus.Identifiers.CERTIFICATE_ARN, producer=name)

    return ConfigFragment(
        name=name,
        content={
            name: {
                "controller": {
                    "service": {
                        "annotations": {
                            "alb.ingress.kubernetes.io/actions.ssl-redirect": {
                                "Type": "redirect",
                                "RedirectConfig": {
                                    "Protocol": "HTTPS",
                                    "Port": "443",
                                    "StatusCode": "HTTP_301",
                                },
                            },
                            "alb.ingress.kubernetes.io/backend-protocol": "HTTPS",
                            "alb.ingress.kubernetes.io/certificate-arn": certificate_arn,
                            "alb.ingress.kubernetes.io/listen-ports": [{"HTTP": 80}, {"HTTPS": 443}],
                            "alb.ingress.kubernetes.io/proxy-body-size": "0",
                            "alb.ingress.kubernetes.io/scheme": "internal",
                            "alb.ingress.kubernetes.io/ssl-policy": INGRESS_SSL_POLICY,
                            "alb.ingress.kubernetes.io/ssl-redirect": "443",
                            "alb.ingress.kubernetes.io/target-type": "ip",
                            "kubernetes.io/ingress.class": "alb",
                            "service.beta.kubernetes.io/aws-load-balancer-backend-protocol": "http",
                            "service.beta.kubernetes.io/aws-load-balancer-connection-idle-timeout": "3600",
                            "service.beta.kubernetes.io/aws-load-balancer-ssl-cert": certificate_arn,
                            "service.beta.kubernetes.io/aws-load-balancer-ssl-ports": "https",
                        },
                    },
                },
            },
        },
    )


async def external_secrets(context: pegasus.ClusterContext) -> ConfigFragment:
    name = str(pegasus.AddOns.EXTERNAL_SECRETS)
    role_arn = await context.role_arn(name)

    return ConfigFragment(
        name=name,
        content={
            name: {
                "serviceAccount": _service_account_annotations(role_arn),
            },
        },
    )


async def grafana(context: pegasus.ClusterContext) -> ConfigFragment:
    name = str(pegasus.AddOns.GRAFANA)
    role_arn = await context.role_arn(name)

    return ConfigFragment(
        name=name,
        content={
            name: {
                "admin": {
                    "existingSecret": f"{context.cluster_name}/grafana/credentials",
                },
                "serviceAccount": _service_account_annotations(role_arn),
                "datasources": {
                    "datasources.yaml": {
                        "apiVersion": 1,
                        "datasources": [
                            {
                                "name": "CloudWatch",
                                "type": "cloudwatch",
                                "jsonData": {
                                    "authType": "default",
                                    "defaultRegion": context.region,
                                },
                            },
                        ],
                    },
                },
            },
        },
    )


def argocd(context: pegasus.ClusterContext) -> list[ConfigFragment]:
    # one values file per app-of-apps bootloader; the chart reads
    # /releases/<env>/app-of-apps-<bootloader>.generated.yaml
    return [
        ConfigFragment(
            name=f"app-of-apps-{bootloader}",
            content={"environment": context.environment},
        )
        for bootloader in context.bootloaders
    ]


REGISTRY: dict[str, Producer] = {
    pegasus.AddOns.AMAZON_CLOUDWATCH_OBSERVABILITY: amazon_cloudwatch_observability,
    pegasus.AddOns.ARGOCD: argocd,
    pegasus.AddOns.AWS_EBS_CSI_DRIVER: aws_ebs_csi_driver,
    pegasus.AddOns.AWS_LOAD_BALANCER_CONTROLLER: aws_load_balancer_controller,
    pegasus.AddOns.EXTERNAL_SECRETS: external_secrets,
    pegasus.AddOns.GRAFANA: grafana,
    pegasus.AddOns.INGRESS_NGINX: ingress_nginx,
    pegasus.AddOns.KARPENTER: karpenter,
}


def select(names: collections.abc.Iterable[str]) -> dict[str, Producer]:
    selected = {}

    for name in names:
        if name not in REGISTRY:
            msg = f"Unknown add-on {name!r}. Valid add-ons are: {sorted(REGISTRY)}"
            raise ValueError(msg)
        selected[str(name)] = REGISTRY[name]

    return selected
