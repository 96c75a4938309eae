import json
import re
import sys
from queue import Queue

import httpx
import pytest

# Ensure project root is importable (so `import lbsync...` works without installing)
import os as _os
_project_root = _os.path.dirname(_os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from lbsync.api_models import Node  # noqa: E402
from lbsync.cloudflare import CloudflareAPI  # noqa: E402
from lbsync.lb_ops import LoadBalancerClient  # noqa: E402
from lbsync.runtime import RuntimeState  # noqa: E402

BASE_URL = "https://cf.test/client/v4"
PREFIX = "/client/v4"

_LB_ROOT = re.compile(r"^/(?:user|organizations/[^/]+)/load_balancers/(monitors|pools)(?:/([^/]+))?$")
_ZONE_LBS = re.compile(r"^/zones/([^/]+)/load_balancers(?:/([^/]+))?$")


class FakeCloudflare:
    """In-memory Cloudflare v4 API served through httpx.MockTransport."""

    def __init__(self, page_size: int = 50):
        self.page_size = page_size
        self.monitors: list[dict] = []
        self.pools: list[dict] = []
        self.zones: list[dict] = [{"id": "zone-1", "name": "example.com"}]
        self.load_balancers: dict[str, list[dict]] = {}
        self.calls: list[tuple[str, str]] = []
        self.bodies: list[tuple[str, str, dict]] = []
        self.failures: dict[tuple[str, str], int] = {}  # (method, kind) -> HTTP status
        self._seq = 0

    @property
    def writes(self) -> list[tuple[str, str]]:
        return [c for c in self.calls if c[0] != "GET"]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def _next_id(self, kind: str) -> str:
        self._seq += 1
        return f"{kind}-{self._seq}"

    def _ok(self, result, result_info=None, status_code=200) -> httpx.Response:
        body = {"success": True, "errors": [], "messages": [], "result": result}
        if result_info is not None:
            body["result_info"] = result_info
        return httpx.Response(status_code, json=body)

    def _fail(self, status_code: int) -> httpx.Response:
        return httpx.Response(
            status_code,
            json={"success": False, "errors": [{"code": 1000, "message": "simulated failure"}], "result": None},
        )

    def _page(self, items: list[dict], request: httpx.Request) -> httpx.Response:
        page = int(request.url.params.get("page", "1"))
        total_pages = max(1, -(-len(items) // self.page_size))
        start = (page - 1) * self.page_size
        chunk = items[start:start + self.page_size]
        info = {"page": page, "per_page": self.page_size, "count": len(chunk), "total_count": len(items), "total_pages": total_pages}
        return self._ok(chunk, info)

    def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path[len(PREFIX):]
        method = request.method
        self.calls.append((method, path))
        body = json.loads(request.content) if request.content else {}
        if method != "GET":
            self.bodies.append((method, path, body))

        m = _LB_ROOT.match(path)
        if m:
            kind, rid = m.group(1), m.group(2)
            if (method, kind) in self.failures:
                return self._fail(self.failures[(method, kind)])
            store = self.monitors if kind == "monitors" else self.pools
            if method == "GET":
                return self._page(store, request)
            if method == "POST":
                obj = {**body, "id": f"{body['name']}-id" if kind == "pools" else self._next_id("mon")}
                store.append(obj)
                return self._ok(obj)
            if method == "PUT":
                for i, existing in enumerate(store):
                    if existing["id"] == rid:
                        store[i] = {**body, "id": rid}
                        return self._ok(store[i])
                return self._fail(404)

        if path == "/zones" and method == "GET":
            if (method, "zones") in self.failures:
                return self._fail(self.failures[(method, "zones")])
            name = request.url.params.get("name")
            return self._page([z for z in self.zones if name is None or z["name"] == name], request)

        m = _ZONE_LBS.match(path)
        if m:
            zone_id, rid = m.group(1), m.group(2)
            if (method, "load_balancers") in self.failures:
                return self._fail(self.failures[(method, "load_balancers")])
            store = self.load_balancers.setdefault(zone_id, [])
            if method == "GET":
                return self._page(store, request)
            if method == "POST":
                obj = {**body, "id": self._next_id("lb")}
                store.append(obj)
                return self._ok(obj)
            if method == "PUT":
                for i, existing in enumerate(store):
                    if existing["id"] == rid:
                        store[i] = {**body, "id": rid}
                        return self._ok(store[i])
                return self._fail(404)

        return self._fail(404)


class FakeNodeSource:
    def __init__(self, nodes=None, error=None):
        self.nodes = list(nodes or [])
        self.error = error
        self.calls = 0

    def list_healthy_nodes(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.nodes)


@pytest.fixture
def fake_cf():
    return FakeCloudflare()


@pytest.fixture
def cf_api(fake_cf):
    api = CloudflareAPI("key", "ops@example.com", base_url=BASE_URL, transport=fake_cf.transport())
    yield api
    api.close()


@pytest.fixture
def lb_client(cf_api):
    return LoadBalancerClient(cf_api)


@pytest.fixture
def two_nodes():
    return [Node("n1", "10.0.0.1"), Node("n2", "10.0.0.2")]


class FakeReconciler:
    """Stands in for lbsync.reconciler.Reconciler in worker and API tests."""

    def __init__(self, error=None, block=None):
        self.runtime = RuntimeState()
        self.reasons = Queue()
        self.error = error
        self.block = block  # threading.Event the cycle waits on before returning

    def reconcile(self, reason="interval"):
        if self.block is not None:
            self.block.wait(5)
        self.reasons.put(reason)
        if self.error is not None:
            raise self.error
