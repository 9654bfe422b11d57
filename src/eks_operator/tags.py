"""Ownership tags stamped on every managed AWS resource.

Tags are the ONLY identity signal linking a cloud resource to this operator
and to a logical cluster. There is no local state file: a resource is ours
if and only if it carries managed-by=nic and cluster-name=<cluster>.
"""

from __future__ import annotations

from enum import Enum

TAG_PREFIX = "nic.nebari.dev"
TAG_MANAGED_BY = f"{TAG_PREFIX}/managed-by"
TAG_CLUSTER_NAME = f"{TAG_PREFIX}/cluster-name"
TAG_RESOURCE_TYPE = f"{TAG_PREFIX}/resource-type"
TAG_VERSION = f"{TAG_PREFIX}/version"
TAG_NODE_POOL = f"{TAG_PREFIX}/node-pool"

MANAGED_BY_VALUE = "nic"
TAG_SCHEMA_VERSION = "0.1.0"

# Kubernetes-owned tags (set by the cloud controller, or required by it)
K8S_CLUSTER_TAG_PREFIX = "kubernetes.io/cluster/"
K8S_PUBLIC_ELB_ROLE_TAG = "kubernetes.io/role/elb"
K8S_PRIVATE_ELB_ROLE_TAG = "kubernetes.io/role/internal-elb"
PUBLIC_SUBNET_MARKER_TAG = "kubernetes.io/role/public-elb"


class ResourceType(str, Enum):
    """Resource kinds recorded in the resource-type tag."""

    VPC = "vpc"
    SUBNET = "subnet"
    INTERNET_GATEWAY = "internet-gateway"
    NAT_GATEWAY = "nat-gateway"
    ROUTE_TABLE = "route-table"
    SECURITY_GROUP = "security-group"
    VPC_ENDPOINT = "vpc-endpoint"
    ELASTIC_IP = "elastic-ip"
    EKS_CLUSTER = "eks-cluster"
    NODE_POOL = "node-pool"
    EFS = "efs"
    IAM_CLUSTER_ROLE = "iam-cluster-role"
    IAM_NODE_ROLE = "iam-node-role"


def generate_tags(
    cluster_name: str,
    resource_type: ResourceType,
    node_pool: str | None = None,
) -> dict[str, str]:
    """Build the ownership tag set for a resource."""
    tags = {
        TAG_MANAGED_BY: MANAGED_BY_VALUE,
        TAG_CLUSTER_NAME: cluster_name,
        TAG_RESOURCE_TYPE: resource_type.value,
        TAG_VERSION: TAG_SCHEMA_VERSION,
    }
    if node_pool:
        tags[TAG_NODE_POOL] = node_pool
    return tags


def merge_tags(user_tags: dict[str, str] | None, system_tags: dict[str, str]) -> dict[str, str]:
    """Merge user tags with ownership tags. Ownership tags always win."""
    merged = dict(user_tags or {})
    merged.update(system_tags)
    return merged


def resource_tags(
    cluster_name: str,
    resource_type: ResourceType,
    user_tags: dict[str, str] | None = None,
    node_pool: str | None = None,
) -> dict[str, str]:
    """Ownership tags merged over the user-supplied tag map."""
    return merge_tags(user_tags, generate_tags(cluster_name, resource_type, node_pool))


def resource_name(cluster_name: str, resource_type: str, suffix: str = "") -> str:
    """Name a resource as <cluster>-<type>[-<suffix>]."""
    if suffix:
        return f"{cluster_name}-{resource_type}-{suffix}"
    return f"{cluster_name}-{resource_type}"


def node_group_name(cluster_name: str, pool_name: str) -> str:
    """Full EKS node group name for a configured pool."""
    return f"{cluster_name}-ng-{pool_name}"


def build_tag_filter(
    cluster_name: str,
    resource_type: ResourceType | None = None,
) -> list[dict[str, object]]:
    """EC2-style Filters matching resources owned by this cluster."""
    filters: list[dict[str, object]] = [
        {"Name": f"tag:{TAG_MANAGED_BY}", "Values": [MANAGED_BY_VALUE]},
        {"Name": f"tag:{TAG_CLUSTER_NAME}", "Values": [cluster_name]},
    ]
    if resource_type is not None:
        filters.append({"Name": f"tag:{TAG_RESOURCE_TYPE}", "Values": [resource_type.value]})
    return filters


def to_tag_list(tags: dict[str, str]) -> list[dict[str, str]]:
    """Convert a tag map to the EC2/EFS/ELB [{Key, Value}] shape."""
    return [{"Key": key, "Value": value} for key, value in sorted(tags.items())]


def from_tag_list(tag_list: list[dict[str, str]] | None) -> dict[str, str]:
    """Convert an AWS [{Key, Value}] tag list to a map."""
    return {tag["Key"]: tag.get("Value", "") for tag in tag_list or []}


def ec2_tag_specification(resource: str, tags: dict[str, str]) -> list[dict[str, object]]:
    """TagSpecifications payload for EC2 create calls."""
    return [{"ResourceType": resource, "Tags": to_tag_list(tags)}]


def is_owned(tags: dict[str, str] | None, cluster_name: str) -> bool:
    """True if the tags claim ownership by this operator for this cluster."""
    if not tags:
        return False
    return (
        tags.get(TAG_MANAGED_BY) == MANAGED_BY_VALUE
        and tags.get(TAG_CLUSTER_NAME) == cluster_name
    )


def ownership_problem(tags: dict[str, str] | None, cluster_name: str) -> str | None:
    """Describe why a resource fetched by exact name is not provably ours.

    Returns None when ownership is proven.
    """
    if not tags:
        return "exists but is not managed (no tags)"
    managed_by = tags.get(TAG_MANAGED_BY)
    if managed_by != MANAGED_BY_VALUE:
        return f"exists but is not managed by {MANAGED_BY_VALUE} (managed-by: {managed_by!r})"
    tagged_cluster = tags.get(TAG_CLUSTER_NAME)
    if tagged_cluster != cluster_name:
        return f"has mismatched cluster name tag (tagged: {tagged_cluster!r}, expected: {cluster_name!r})"
    return None


def kubernetes_cluster_tag(cluster_name: str) -> str:
    """Tag key the Kubernetes cloud controller puts on resources it creates."""
    return f"{K8S_CLUSTER_TAG_PREFIX}{cluster_name}"


def cluster_role_name(cluster_name: str) -> str:
    """IAM role assumed by the EKS control plane."""
    return resource_name(cluster_name, "cluster-role")


def node_role_name(cluster_name: str) -> str:
    """IAM role assumed by worker node instances."""
    return resource_name(cluster_name, "node-role")
