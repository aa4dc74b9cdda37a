"""Pulumi resources that schedule the bootstrap controller as a one-shot Job.

The Job, its ServiceAccount and the key material Secret all live in one
namespace; the Role lets the Job create the Secret and read it back.
"""
import pulumi
from pulumi_kubernetes.batch.v1 import Job
from pulumi_kubernetes.core.v1 import ServiceAccount
from pulumi_kubernetes.rbac.v1 import Role, RoleBinding

DEFAULT_NAMESPACE = "vault"


def pod_address(index: int, port: int = 8200) -> str:
    return f"http://vault-{index}.vault-internal.vault.svc.cluster.local:{port}"


def secret_rules(keys_secret: str = "vault-init") -> list[dict]:
    """RBAC rules for the key material Secret.

    ``create`` cannot be narrowed by resource name, ``get`` can.
    """
    return [
        {"apiGroups": [""], "resources": ["secrets"], "verbs": ["create"]},
        {
            "apiGroups": [""],
            "resources": ["secrets"],
            "resourceNames": [keys_secret],
            "verbs": ["get"],
        },
    ]


def job_spec(
    image: str,
    leader_addr: str,
    pod_count: int = 3,
    namespace: str = DEFAULT_NAMESPACE,
    keys_secret: str = "vault-init",
    service_account: str = "vault-bootstrap",
) -> dict:
    """Spec of the bootstrap Job: leader address plus every other pod as a peer.

    Key material is written to ``keys_secret`` in the Job's own namespace.
    """
    peers = ",".join(pod_address(i) for i in range(1, pod_count))
    env = {
        "VAULT_ADDR": leader_addr,
        "VAULT_PEER_ADDRS": peers,
        "VAULT_KEYS_BACKEND": "kubernetes",
        "VAULT_KEYS_SECRET": keys_secret,
        "VAULT_KEYS_NAMESPACE": namespace,
    }
    return {
        "backoffLimit": 5,
        "template": {
            "spec": {
                "serviceAccountName": service_account,
                "restartPolicy": "OnFailure",
                "containers": [{
                    "name": "bootstrap",
                    "image": image,
                    "command": ["vault-bootstrap"],
                    "args": ["run"],
                    "env": [{"name": k, "value": v} for k, v in env.items()],
                }],
            }
        },
    }


def bootstrap_job(name: str, image: str, leader_addr: str, pod_count: int = 3,
                  namespace: str = DEFAULT_NAMESPACE, keys_secret: str = "vault-init",
                  opts: pulumi.ResourceOptions | None = None) -> Job:
    """Create the Job together with the ServiceAccount and RBAC it runs under."""
    metadata = {"name": name, "namespace": namespace}
    account = ServiceAccount(name, metadata=metadata, opts=opts)
    role = Role(name, metadata=metadata, rules=secret_rules(keys_secret), opts=opts)
    binding = RoleBinding(
        name,
        metadata=metadata,
        role_ref={"apiGroup": "rbac.authorization.k8s.io", "kind": "Role", "name": name},
        subjects=[{"kind": "ServiceAccount", "name": name, "namespace": namespace}],
        opts=opts,
    )
    depends = pulumi.ResourceOptions(depends_on=[account, role, binding])
    return Job(
        name,
        metadata=metadata,
        spec=job_spec(image, leader_addr, pod_count, namespace, keys_secret, name),
        opts=pulumi.ResourceOptions.merge(opts, depends),
    )
