import pulumi

from vault_bootstrap.deploy import DEFAULT_NAMESPACE, bootstrap_job, pod_address

config = pulumi.Config("vault")
vault_addr = config.get("address") or pod_address(0)
pod_count = config.get_int("pod_count") or 3
image = config.require("image")
namespace = config.get("namespace") or DEFAULT_NAMESPACE

job = bootstrap_job(
    "vault-bootstrap",
    image=image,
    leader_addr=vault_addr,
    pod_count=pod_count,
    namespace=namespace,
)

pulumi.export("bootstrap_job", job.metadata.apply(lambda m: m.name))
