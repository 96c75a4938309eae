"""Cloudflare load balancer synchroniser (lbsync).

Long-running controller that keeps a Cloudflare load balancer pool in line
with the healthy nodes of a Kubernetes cluster:
 - bootstrap: health monitor -> origin pool -> load balancer, in that order
 - steady state: re-apply current node membership to the pool on a jittered timer
 - optional node watch that triggers debounced out-of-cycle reconciliation

Remote state is the system of record; nothing is persisted locally.
"""

__version__ = "0.1.0"
