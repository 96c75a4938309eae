import pytest

from conftest import FakeNodeSource
from lbsync.api_models import Node
from lbsync.errors import MembershipQueryError, PoolUpdateError
from lbsync.reconciler import (
    CycleOutcome,
    DnsStrategy,
    Mode,
    PoolStrategy,
    Reconciler,
    Target,
    build_strategy,
)

TARGET = Target(lb_name="web", pool_name="pool1", zone="example.com", monitor_path="/healthz")


def _reconciler(lb_client, nodes):
    source = FakeNodeSource(nodes)
    return Reconciler(PoolStrategy(source, lb_client, TARGET)), source


def test_bootstrap_from_empty_remote_state(fake_cf, lb_client, two_nodes):
    rec, _ = _reconciler(lb_client, two_nodes)

    assert rec.bootstrap() is CycleOutcome.SYNCED

    assert [(m, p) for m, p, _ in fake_cf.bodies] == [
        ("POST", "/user/load_balancers/monitors"),
        ("POST", "/user/load_balancers/pools"),
        ("POST", "/zones/zone-1/load_balancers"),
    ]
    monitor_id = fake_cf.monitors[0]["id"]
    assert fake_cf.monitors[0]["description"] == "pool1.example.com/healthz"
    assert fake_cf.pools[0]["monitor"] == monitor_id
    assert fake_cf.pools[0]["name"] == "pool1"
    assert len(fake_cf.pools[0]["origins"]) == 2
    lb = fake_cf.load_balancers["zone-1"][0]
    assert lb["name"] == "web.example.com"
    assert lb["default_pools"] == ["pool1-id"]

    snap = rec.snapshot
    assert snap.monitor.id == monitor_id
    assert snap.pool.id == "pool1-id"
    assert snap.load_balancer.name == "web.example.com"
    assert rec.runtime.status()["resources"] == {"monitor": monitor_id, "pool": "pool1-id", "load_balancer": snap.load_balancer.id}


def test_bootstrap_appends_to_existing_load_balancer(fake_cf, lb_client, two_nodes):
    fake_cf.load_balancers["zone-1"] = [
        {"id": "lb-9", "name": "web.example.com", "default_pools": ["otherpool-id"], "fallback_pool": "otherpool-id"}
    ]
    rec, _ = _reconciler(lb_client, two_nodes)

    rec.bootstrap()

    assert fake_cf.load_balancers["zone-1"][0]["default_pools"] == ["otherpool-id", "pool1-id"]


def test_steady_state_only_touches_the_pool(fake_cf, lb_client, two_nodes):
    rec, source = _reconciler(lb_client, two_nodes)
    rec.bootstrap()
    fake_cf.calls.clear()
    fake_cf.bodies.clear()

    source.nodes = [Node("n2", "10.0.0.2"), Node("n3", "10.0.0.3")]
    assert rec.reconcile() is CycleOutcome.SYNCED

    assert fake_cf.calls == [("GET", "/user/load_balancers/pools"), ("PUT", "/user/load_balancers/pools/pool1-id")]
    assert [o["name"] for o in fake_cf.pools[0]["origins"]] == ["n2", "n3"]
    assert fake_cf.pools[0]["monitor"] == rec.snapshot.monitor.id
    assert rec.snapshot.nodes == source.nodes


def test_steady_state_failure_keeps_snapshot_and_propagates(fake_cf, lb_client, two_nodes):
    rec, source = _reconciler(lb_client, two_nodes)
    rec.bootstrap()
    before = rec.snapshot.pool

    source.nodes = [Node("n9", "10.0.0.9")]
    fake_cf.failures[("PUT", "pools")] = 500
    with pytest.raises(PoolUpdateError):
        rec.reconcile()

    assert rec.snapshot.pool is before
    assert rec.snapshot.nodes == two_nodes
    status = rec.runtime.status()
    assert status["cycles_failed"] == 1
    assert status["last_cycle"]["outcome"] == "failed"
    assert "PoolUpdateError" in status["last_cycle"]["error"]


def test_bootstrap_failure_propagates(fake_cf, lb_client):
    source = FakeNodeSource(error=MembershipQueryError("all nodes", "boom"))
    rec = Reconciler(PoolStrategy(source, lb_client, TARGET))

    with pytest.raises(MembershipQueryError):
        rec.bootstrap()
    assert fake_cf.calls == []
    assert rec.runtime.status()["bootstrapped_at"] is None


def test_reconcile_before_bootstrap_is_refused(lb_client, two_nodes):
    rec, _ = _reconciler(lb_client, two_nodes)
    with pytest.raises(RuntimeError):
        rec.reconcile()


def test_dns_strategy_reports_not_implemented(fake_cf, lb_client, two_nodes):
    strategy = build_strategy("dns", FakeNodeSource(two_nodes), lb_client, TARGET)
    assert isinstance(strategy, DnsStrategy)

    rec = Reconciler(strategy)
    assert rec.bootstrap() is CycleOutcome.NOT_IMPLEMENTED
    assert rec.reconcile() is CycleOutcome.NOT_IMPLEMENTED
    assert fake_cf.calls == []
    assert rec.runtime.status()["mode"] == "dns"


def test_build_strategy():
    assert isinstance(build_strategy(Mode.POOL, FakeNodeSource(), None, TARGET), PoolStrategy)
    with pytest.raises(ValueError):
        build_strategy("records", FakeNodeSource(), None, TARGET)
