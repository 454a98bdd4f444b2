"""Pulumi program to deploy the vault allocator to Kubernetes as an hourly CronJob."""

import os
from pathlib import Path

import pulumi
import pulumi_kubernetes as k8s

config = pulumi.Config("vault-allocator")

image = os.environ.get("IMAGE_TAG", config.get("image") or "vault-allocator:latest")
namespace_name = config.get("namespace") or "vault-allocator"
schedule = config.get("schedule") or "0 * * * *"
rpc_url = config.require_secret("rpc_url")
private_key = config.require_secret("private_key")
safe_address = config.require("safe_address")
vault_address = config.require("vault_address")
adapter_address = config.require("adapter_address")
dry_run = config.get_bool("dry_run") or False

SETTINGS = (Path(__file__).resolve().parent.parent / "config" / "settings.yaml").read_text()

namespace = k8s.core.v1.Namespace(
    "namespace",
    metadata=k8s.meta.v1.ObjectMetaArgs(name=namespace_name),
)

secret = k8s.core.v1.Secret(
    "allocator-secrets",
    metadata=k8s.meta.v1.ObjectMetaArgs(
        name="allocator-secrets",
        namespace=namespace.metadata.name,
    ),
    string_data={
        "RPC_URL": rpc_url,
        "PRIVATE_KEY": private_key,
    },
)

configmap = k8s.core.v1.ConfigMap(
    "allocator-config",
    metadata=k8s.meta.v1.ObjectMetaArgs(
        name="allocator-config",
        namespace=namespace.metadata.name,
    ),
    data={"settings.yaml": SETTINGS},
)

# Optional oracle overrides for markets deployed after the settings file was written
ORACLE_ENV = []
for env_name in ("ORACLE_STUSDS", "ORACLE_CBBTC", "ORACLE_WSTETH", "ORACLE_WETH"):
    oracle = config.get(env_name.lower())
    if oracle:
        ORACLE_ENV.append(k8s.core.v1.EnvVarArgs(name=env_name, value=oracle))

# At most one run in flight: every run consumes the same Safe nonce
cronjob = k8s.batch.v1.CronJob(
    "vault-allocator",
    metadata=k8s.meta.v1.ObjectMetaArgs(
        name="vault-allocator",
        namespace=namespace.metadata.name,
    ),
    spec=k8s.batch.v1.CronJobSpecArgs(
        schedule=schedule,
        concurrency_policy="Forbid",
        successful_jobs_history_limit=3,
        failed_jobs_history_limit=3,
        job_template=k8s.batch.v1.JobTemplateSpecArgs(
            spec=k8s.batch.v1.JobSpecArgs(
                ttl_seconds_after_finished=86400,
                # a failed run is retried by the next schedule, not by the Job
                backoff_limit=0,
                active_deadline_seconds=1800,
                template=k8s.core.v1.PodTemplateSpecArgs(
                    metadata=k8s.meta.v1.ObjectMetaArgs(
                        labels={"app": "vault-allocator", "component": "allocator"},
                    ),
                    spec=k8s.core.v1.PodSpecArgs(
                        restart_policy="Never",
                        containers=[
                            k8s.core.v1.ContainerArgs(
                                name="allocator",
                                image=image,
                                command=["python", "-m", "vault_allocator"],
                                env=[
                                    k8s.core.v1.EnvVarArgs(name="SAFE_ADDRESS", value=safe_address),
                                    k8s.core.v1.EnvVarArgs(name="VAULT_ADDRESS", value=vault_address),
                                    k8s.core.v1.EnvVarArgs(name="ADAPTER_ADDRESS", value=adapter_address),
                                    k8s.core.v1.EnvVarArgs(name="DRY_RUN", value=str(dry_run).lower()),
                                    k8s.core.v1.EnvVarArgs(
                                        name="ALLOCATOR_CONFIG", value="/app/config/settings.yaml"
                                    ),
                                    *ORACLE_ENV,
                                ],
                                env_from=[
                                    k8s.core.v1.EnvFromSourceArgs(
                                        secret_ref=k8s.core.v1.SecretEnvSourceArgs(
                                            name=secret.metadata.name,
                                        ),
                                    ),
                                ],
                                volume_mounts=[
                                    k8s.core.v1.VolumeMountArgs(
                                        name="config",
                                        mount_path="/app/config",
                                        read_only=True,
                                    ),
                                    k8s.core.v1.VolumeMountArgs(
                                        name="logs",
                                        mount_path="/app/logs",
                                    ),
                                ],
                                resources=k8s.core.v1.ResourceRequirementsArgs(
                                    requests={"cpu": "50m", "memory": "128Mi"},
                                    limits={"cpu": "250m", "memory": "256Mi"},
                                ),
                            ),
                        ],
                        volumes=[
                            k8s.core.v1.VolumeArgs(
                                name="config",
                                config_map=k8s.core.v1.ConfigMapVolumeSourceArgs(
                                    name=configmap.metadata.name,
                                ),
                            ),
                            k8s.core.v1.VolumeArgs(
                                name="logs",
                                empty_dir=k8s.core.v1.EmptyDirVolumeSourceArgs(),
                            ),
                        ],
                    ),
                ),
            ),
        ),
    ),
)

pulumi.export("namespace", namespace.metadata.name)
pulumi.export("allocator-cronjob", cronjob.metadata.name)
