from __future__ import annotations


class ReconcileError(Exception):
    """A reconciliation step failed.

    Carries the operation that failed, the resource it was working on and the
    underlying cause, so log lines can name all three.
    """

    operation = "reconcile"
    fatal = False

    def __init__(self, resource: str, cause: BaseException | str | None = None):
        self.resource = resource
        self.cause = cause
        msg = f"{self.operation} {resource!r} failed"
        if cause is not None:
            msg = f"{msg}: {cause}"
        super().__init__(msg)


class MembershipQueryError(ReconcileError):
    operation = "list nodes"


class MonitorLookupError(ReconcileError):
    operation = "list monitors"


class MonitorCreateError(ReconcileError):
    operation = "create monitor"


class PoolLookupError(ReconcileError):
    operation = "list pools"


class PoolCreateError(ReconcileError):
    operation = "create pool"


class PoolUpdateError(ReconcileError):
    operation = "update pool"


class ZoneNotFoundError(ReconcileError):
    # Nothing downstream can run without a zone id.
    operation = "resolve zone"
    fatal = True


class LoadBalancerLookupError(ReconcileError):
    operation = "list load balancers"


class LoadBalancerCreateError(ReconcileError):
    operation = "create load balancer"


class LoadBalancerUpdateError(ReconcileError):
    operation = "update load balancer"
