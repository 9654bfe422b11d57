"""Error taxonomy for reconciliation and teardown.

Reconcilers raise these; only the outermost caller (Reconciler, CLI)
formats them for display. botocore ClientError is never wrapped here,
it propagates unchanged unless a caller classifies it.
"""

from __future__ import annotations


class EKSOperatorError(Exception):
    """Base class for all operator errors."""

    pass


class ImmutableFieldError(EKSOperatorError):
    """Raised when desired state changes a field that cannot be updated in place.

    Never retried. The resource has to be destroyed and recreated manually.
    """

    def __init__(
        self,
        resource: str,
        field: str,
        current: object,
        desired: object,
        remedy: str = "destroy and recreate the resource",
    ) -> None:
        self.resource = resource
        self.field = field
        self.current = current
        self.desired = desired
        super().__init__(
            f"{resource} {field} is immutable and cannot be changed "
            f"(current: {current}, desired: {desired}). "
            f"Manual intervention required - {remedy}"
        )


class InvalidVersionUpgradeError(EKSOperatorError):
    """Raised when a control-plane version change is not a sequential upgrade."""

    def __init__(self, current: str, desired: str, reason: str) -> None:
        self.current = current
        self.desired = desired
        self.reason = reason
        super().__init__(
            f"invalid Kubernetes version upgrade from {current} to {desired}: {reason}"
        )


class UnmanagedResourceError(EKSOperatorError):
    """Raised when a resource fetched by exact name is not provably ours.

    Listing treats foreign resources as invisible; an exact-name lookup
    that hits a foreign or ambiguously tagged resource is fatal instead.
    """

    pass


class DiscoveryError(EKSOperatorError):
    """Raised when discovery finds an ambiguous set of resources."""

    pass


class ProvisioningError(EKSOperatorError):
    """Raised when a resource cannot be created from the given inputs."""

    pass


class WaitTimeoutError(EKSOperatorError):
    """Raised when a resource does not reach its target state in time."""

    def __init__(self, description: str, timeout_seconds: float) -> None:
        self.description = description
        self.timeout_seconds = timeout_seconds
        super().__init__(f"timed out after {timeout_seconds:g}s waiting for {description}")


class OperationCancelledError(EKSOperatorError):
    """Raised when the reconciliation pass is cancelled mid-flight."""

    pass


class NodePoolReconcileError(EKSOperatorError):
    """Aggregate failure of one or more node pool tasks.

    Attributes:
        create_failures: Pool name -> error for failed creates.
        update_failures: Pool name -> error for failed updates.
        delete_failures: Node group name -> error for failed orphan deletes.
    """

    def __init__(
        self,
        create_failures: dict[str, BaseException],
        update_failures: dict[str, BaseException],
        delete_failures: dict[str, BaseException],
    ) -> None:
        self.create_failures = create_failures
        self.update_failures = update_failures
        self.delete_failures = delete_failures

        parts: list[str] = []
        for verb, failures in (
            ("create", create_failures),
            ("update", update_failures),
            ("delete orphaned", delete_failures),
        ):
            if failures:
                details = ", ".join(f"{name}: {err}" for name, err in sorted(failures.items()))
                parts.append(f"failed to {verb} {len(failures)} node pool(s): [{details}]")
        super().__init__("; ".join(parts))

    @property
    def failures(self) -> dict[str, BaseException]:
        """All failures keyed by pool name, across every wave."""
        merged: dict[str, BaseException] = {}
        merged.update(self.create_failures)
        merged.update(self.update_failures)
        merged.update(self.delete_failures)
        return merged
