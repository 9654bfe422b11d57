"""In-memory classic ELB, populated the way the Kubernetes cloud controller would."""

from __future__ import annotations

import copy
from typing import Any

from .base import MockService, make_client_error, tag_list

DESCRIBE_TAGS_LIMIT = 20


class MockELB(MockService):
    id_prefix = "elb"

    def __init__(self) -> None:
        super().__init__()
        self.load_balancers: dict[str, dict[str, Any]] = {}
        self.tags: dict[str, list[dict[str, str]]] = {}
        self.page_size = 400

    def add_load_balancer(
        self,
        name: str,
        *,
        vpc_id: str = "vpc-12345678",
        security_groups: list[str] | None = None,
        tags: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        description = {
            "LoadBalancerName": name,
            "DNSName": f"{name}.us-west-2.elb.amazonaws.com",
            "VPCId": vpc_id,
            "SecurityGroups": list(security_groups or []),
        }
        self.load_balancers[name] = description
        self.tags[name] = tag_list(tags or {})
        return description

    def describe_load_balancers(self, **kwargs: Any) -> dict[str, Any]:
        self._record("describe_load_balancers", kwargs)
        names = sorted(self.load_balancers)
        start = int(kwargs.get("Marker") or 0)
        end = start + self.page_size
        response: dict[str, Any] = {
            "LoadBalancerDescriptions": [copy.deepcopy(self.load_balancers[name]) for name in names[start:end]]
        }
        if end < len(names):
            response["NextMarker"] = str(end)
        return response

    def describe_tags(self, **kwargs: Any) -> dict[str, Any]:
        self._record("describe_tags", kwargs)
        names = kwargs["LoadBalancerNames"]
        if len(names) > DESCRIBE_TAGS_LIMIT:
            raise make_client_error(
                "ValidationError",
                "DescribeTags",
                f"LoadBalancerNames must have length less than or equal to {DESCRIBE_TAGS_LIMIT}",
            )
        missing = [name for name in names if name not in self.load_balancers]
        if missing:
            raise make_client_error("LoadBalancerNotFound", "DescribeTags")
        return {
            "TagDescriptions": [
                {"LoadBalancerName": name, "Tags": copy.deepcopy(self.tags[name])} for name in names
            ]
        }

    def delete_load_balancer(self, **kwargs: Any) -> dict[str, Any]:
        self._record("delete_load_balancer", kwargs)
        # Deleting a missing load balancer succeeds in the real API
        self.load_balancers.pop(kwargs["LoadBalancerName"], None)
        self.tags.pop(kwargs["LoadBalancerName"], None)
        return {}
