from __future__ import annotations

import logging
import signal
import sys
import threading
import time

import uvicorn

from lbsync import __version__
from lbsync.api import create_app
from lbsync.cloudflare import CloudflareAPI
from lbsync.errors import ReconcileError
from lbsync.kube_ops import NodeSource, load_kube_config
from lbsync.lb_ops import LoadBalancerClient
from lbsync.reconciler import CycleOutcome, Mode, Reconciler, Target, build_strategy
from lbsync.runtime import RuntimeState
from lbsync.scheduler import ReconcileWorker
from lbsync.settings import Settings
from lbsync.watch import NodeWatcher

logger = logging.getLogger("lbsync")


class LogfmtFormatter(logging.Formatter):
    """One ``key=value`` line per record."""

    def format(self, record: logging.LogRecord) -> str:
        msg = record.getMessage().replace('"', '\\"')
        line = f'ts={self.formatTime(record)} level={record.levelname} logger={record.name} msg="{msg}"'
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def configure_logging(level_name: str) -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(LogfmtFormatter())
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(getattr(logging, level_name.upper(), logging.INFO))


def build_reconciler(settings: Settings, runtime: RuntimeState, api: CloudflareAPI) -> tuple[Reconciler, NodeSource]:
    load_kube_config()
    source = NodeSource(
        label_selector=settings.node_label_selector,
        address_type=settings.node_address_type,
        request_timeout_s=settings.kube_timeout_s,
    )
    target = Target(
        lb_name=settings.lb_name,
        pool_name=settings.pool_name,
        zone=settings.zone,
        monitor_path=settings.monitor_path,
    )
    strategy = build_strategy(settings.mode, source, LoadBalancerClient(api), target)
    return Reconciler(strategy, runtime), source


def start_http_server(app, host: str, port: int) -> uvicorn.Server:
    # Off the main thread uvicorn leaves signal handling to us.
    server = uvicorn.Server(uvicorn.Config(app, host=host, port=port, log_level="warning"))
    threading.Thread(target=server.run, name="http-server", daemon=True).start()
    return server


def main() -> int:
    settings = Settings()
    configure_logging(settings.log_level)
    logger.info("Starting lbsync %s...", __version__)

    missing = settings.missing_required()
    if missing:
        logger.error("Missing required configuration: %s", ", ".join(missing))
        return 2
    if settings.mode not in {m.value for m in Mode}:
        logger.error("Unknown LBSYNC_MODE %r (expected one of: %s)", settings.mode, ", ".join(m.value for m in Mode))
        return 2

    api = CloudflareAPI(
        settings.cf_api_key,
        settings.cf_api_email,
        organization_id=settings.cf_org_id,
        base_url=settings.cf_api_base_url,
        timeout_s=settings.cf_api_timeout_s,
    )
    with api:
        return serve(settings, api)


def serve(settings: Settings, api: CloudflareAPI) -> int:
    """Bootstrap, then run the worker until a signal or a fatal error. Returns the exit code."""
    shutdown = threading.Event()
    exit_code = 0

    def on_signal(signum, frame) -> None:
        logger.info("Received %s. Waiting on running tasks to finish...", signal.Signals(signum).name)
        shutdown.set()

    def on_fatal(err: ReconcileError) -> None:
        nonlocal exit_code
        exit_code = 1
        shutdown.set()

    signal.signal(signal.SIGTERM, on_signal)
    signal.signal(signal.SIGINT, on_signal)

    runtime = RuntimeState()
    try:
        reconciler, source = build_reconciler(settings, runtime, api)
    except Exception:
        logger.exception("Failed creating clients")
        return 1

    worker = ReconcileWorker(
        reconciler,
        interval_s=settings.interval_s,
        debounce_s=settings.watch_debounce_s,
        on_fatal=on_fatal,
    )
    server = start_http_server(create_app(runtime, worker), settings.listen_host, settings.listen_port)
    logger.info("Serving status and metrics on %s:%s", settings.listen_host, settings.listen_port)

    try:
        outcome = reconciler.bootstrap()
    except ReconcileError as e:
        logger.error("Bootstrap failed: operation=%s resource=%s cause=%s", e.operation, e.resource, e.cause)
        server.should_exit = True
        return 1
    except Exception:
        logger.exception("Bootstrap failed")
        server.should_exit = True
        return 1
    if outcome is CycleOutcome.NOT_IMPLEMENTED:
        logger.warning("Mode %s is not implemented; the controller will idle", settings.mode)

    worker.start()
    watcher: NodeWatcher | None = None
    if settings.watch_nodes and reconciler.strategy.mode is Mode.POOL:
        watcher = NodeWatcher(source, worker.notify_change)
        watcher.start()

    while not shutdown.wait(1.0):
        pass

    if watcher is not None:
        watcher.stop()
    worker.stop()
    drain(worker, watcher, settings.shutdown_timeout_s)
    server.should_exit = True
    logger.info("Shutting down...")
    return exit_code


def drain(worker: threading.Thread, watcher: threading.Thread | None, timeout_s: float) -> bool:
    """Wait up to ``timeout_s`` for the background threads; False if any is still running."""
    deadline = time.monotonic() + timeout_s
    clean = True
    for thread in (worker, watcher):
        if thread is None:
            continue
        thread.join(timeout=max(0.0, deadline - time.monotonic()))
        if thread.is_alive():
            logger.warning("%s did not stop within %ss; exiting anyway", thread.name, timeout_s)
            clean = False
    return clean


def run() -> None:
    raise SystemExit(main())


if __name__ == "__main__":
    run()
