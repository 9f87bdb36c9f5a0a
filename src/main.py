"""
Main entry point for the Grafana Dashboard Loader.

Builds the Kubernetes and Grafana clients, wires the controller together
and runs it until SIGINT or SIGTERM.
"""

import asyncio
import logging
import signal
import sys
from typing import Optional

from kubernetes import client as kube_client
from kubernetes import config as kube_config
from kubernetes.config import ConfigException

from config import Config, get_config
from controller import DashboardController
from grafana import GrafanaClient
from reconciler import DashboardReconciler
from watcher import ConfigMapWatcher

logger = logging.getLogger(__name__)


class BootstrapError(Exception):
    """Raised when the loader cannot obtain access to the cluster."""


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def load_cluster_config() -> None:
    """
    Load Kubernetes credentials, preferring the in-cluster service account.

    Raises:
        BootstrapError: If neither in-cluster nor kubeconfig credentials
            are available.
    """
    try:
        kube_config.load_incluster_config()
        return
    except ConfigException:
        logger.debug("Not running in a cluster, falling back to kubeconfig")

    try:
        kube_config.load_kube_config()
    except (ConfigException, OSError) as e:
        raise BootstrapError(f"Failed to get cluster config: {e}") from e


class Application:
    """Main application that wires the controller to its collaborators."""

    def __init__(self, config: Optional[Config] = None):
        self.config = config or get_config()
        self.controller: Optional[DashboardController] = None

    def initialize(self) -> None:
        """Initialize all components."""
        logger.info("Initializing Grafana Dashboard Loader")

        load_cluster_config()
        core_api = kube_client.CoreV1Api()

        watcher = ConfigMapWatcher(core_api, self.config.watch)
        reconciler = DashboardReconciler(GrafanaClient(self.config.grafana))
        self.controller = DashboardController(reconciler, watcher)

        logger.info(f"Grafana API at {self.config.grafana.base_url}")

    async def start(self) -> None:
        """Start the application."""
        if not self.controller:
            self.initialize()
        await self.controller.start()

    async def stop(self) -> None:
        """Stop the application gracefully."""
        if self.controller:
            await self.controller.stop()
        logger.info("Grafana Dashboard Loader stopped")


async def main() -> int:
    """Main entry point."""
    config = get_config()
    setup_logging(config.logging.level)

    app = Application(config)
    try:
        app.initialize()
    except BootstrapError as e:
        logger.error(str(e))
        return 1

    # Set up signal handlers for graceful shutdown
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        asyncio.create_task(app.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await app.start()
    finally:
        await app.stop()
    return 0


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
