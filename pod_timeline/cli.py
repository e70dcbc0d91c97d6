"""CLI entry point for pod-timeline.

Usage:
    pod-timeline watch [--namespace NS] [--context CTX] [--database DB] [--workers N]
    pod-timeline status
    pod-timeline init
"""

from __future__ import annotations

import logging
import signal
import sys
import time
from pathlib import Path

import click
import yaml
from rich.console import Console

from pod_timeline import __version__
from pod_timeline.config import CONFIG_FILENAME, Config
from pod_timeline.driver import ReconciliationDriver
from pod_timeline.k8s_client import K8sClient
from pod_timeline.output import render_summary
from pod_timeline.store import SqlAlchemyReconciliationStore, StoreError
from pod_timeline.watcher import EventWatcher

console = Console()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def _load_config(config_path: str) -> Config:
    try:
        return Config.load(config_path or None)
    except (ValueError, yaml.YAMLError) as exc:
        console.print(f"[bold red]Invalid configuration:[/bold red] {exc}")
        sys.exit(1)


def _connect(cfg: Config) -> K8sClient:
    k8s = K8sClient(kubeconfig=cfg.kubeconfig or None, context=cfg.context or None)
    try:
        k8s.connect()
    except Exception as exc:
        console.print(f"[bold red]Failed to connect to cluster:[/bold red] {exc}")
        console.print(
            "\n[dim]Make sure your kubeconfig is valid and the cluster is reachable.\n"
            "You can specify a context with --context or a kubeconfig with --kubeconfig.[/dim]"
        )
        sys.exit(1)
    return k8s


def _open_store(cfg: Config) -> SqlAlchemyReconciliationStore:
    try:
        return SqlAlchemyReconciliationStore.from_url(
            cfg.database_url, max_attempts=cfg.max_attempts
        )
    except StoreError as exc:
        console.print(f"[bold red]Cannot open store {cfg.database}:[/bold red] {exc}")
        sys.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name="pod-timeline")
def main():
    """Record when each pod was scheduled, pulled, created, started and killed.

    Watches cluster events and folds them into one durable timeline per pod.
    The first observation of each milestone wins; later duplicates are ignored.
    """
    pass


@main.command()
@click.option("--namespace", "-n", default="", help="Limit to a specific namespace (default: all)")
@click.option("--context", "-c", default="", help="Kubernetes context to use")
@click.option("--kubeconfig", "-k", default="", help="Path to kubeconfig file")
@click.option("--database", "-d", default="", help="SQLAlchemy URL or SQLite file path")
@click.option("--workers", "-w", type=click.IntRange(min=1), default=None, help="Reconciliation threads")
@click.option("--config", "config_path", default="", help="Path to config file")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def watch(
    namespace: str,
    context: str,
    kubeconfig: str,
    database: str,
    workers: int | None,
    config_path: str,
    verbose: bool,
):
    """Watch pod events and reconcile them into lifecycle records."""
    _configure_logging(verbose)

    # Load config (file -> env -> CLI flags)
    cfg = _load_config(config_path)

    if namespace:
        cfg.namespace = namespace
    if context:
        cfg.context = context
    if kubeconfig:
        cfg.kubeconfig = kubeconfig
    if database:
        cfg.database = database
    if workers:
        cfg.workers = workers

    console.print("[bold]Connecting to Kubernetes cluster...[/bold]")
    k8s = _connect(cfg)
    cluster_name, context_name = k8s.describe()
    console.print(f"[green]Connected to cluster:[/green] {cluster_name} (context: {context_name})")

    store = _open_store(cfg)
    watcher = EventWatcher(k8s, namespace=cfg.namespace or None, timeout_seconds=cfg.watch_timeout)
    driver = ReconciliationDriver(store, workers=cfg.workers)

    def _shutdown(signum, frame):
        console.print("\n[yellow]Stopping, letting in-flight merges finish...[/yellow]")
        driver.stop()
        watcher.stop()

    signal.signal(signal.SIGTERM, _shutdown)

    console.print(
        f"[dim]Watching pod events in {cfg.namespace or 'all namespaces'}, "
        f"storing to {cfg.database} with {cfg.workers} worker(s). Ctrl-C to stop.[/dim]"
    )

    t0 = time.time()
    try:
        driver.run(watcher.stream())
    except KeyboardInterrupt:
        _shutdown(signal.SIGINT, None)
    finally:
        store.close()
        k8s.close()

    # Counters of the interrupted run are still live on the driver
    render_summary(driver.stats, console, elapsed=time.time() - t0)


@main.command()
@click.option("--context", "-c", default="", help="Kubernetes context to use")
@click.option("--kubeconfig", "-k", default="", help="Path to kubeconfig file")
@click.option("--database", "-d", default="", help="SQLAlchemy URL or SQLite file path")
@click.option("--config", "config_path", default="", help="Path to config file")
def status(context: str, kubeconfig: str, database: str, config_path: str):
    """Check cluster connectivity and that the store is reachable."""
    cfg = _load_config(config_path)
    if context:
        cfg.context = context
    if kubeconfig:
        cfg.kubeconfig = kubeconfig
    if database:
        cfg.database = database

    healthy = True

    k8s = K8sClient(kubeconfig=cfg.kubeconfig or None, context=cfg.context or None)
    try:
        k8s.connect()
        cluster_name, context_name = k8s.describe()
        console.print(f"[green]Cluster:[/green] {cluster_name}")
        console.print(f"[green]Context:[/green] {context_name}")
    except Exception as exc:
        console.print(f"[bold red]Cannot connect to cluster:[/bold red] {exc}")
        healthy = False

    try:
        store = SqlAlchemyReconciliationStore.from_url(cfg.database_url)
        try:
            store.ping()
        finally:
            store.close()
        console.print(f"[green]Store:[/green] {cfg.database} reachable")
    except StoreError as exc:
        console.print(f"[bold red]Store unreachable:[/bold red] {exc}")
        healthy = False

    if not healthy:
        sys.exit(1)


SAMPLE_CONFIG = """\
# pod-timeline configuration
# Place this file at .pod-timeline.yaml in your project or home directory.

# Kubernetes connection
# kubeconfig: ~/.kube/config
# context: my-cluster
# namespace: ""  # empty = all namespaces
watch_timeout: 300  # seconds before the watch is re-opened

# Storage: a SQLite file path or any SQLAlchemy URL
database: store.sqlite
max_attempts: 5  # retries when concurrent writers race on the same pod

# Reconciliation threads
workers: 1
"""


@main.command()
def init():
    """Generate a sample configuration file."""
    out_path = Path.cwd() / CONFIG_FILENAME
    if out_path.exists():
        console.print(f"[yellow]Config file already exists:[/yellow] {out_path}")
        return

    out_path.write_text(SAMPLE_CONFIG)
    console.print(f"[green]Created config file:[/green] {out_path}")


if __name__ == "__main__":
    main()
