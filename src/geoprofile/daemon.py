"""
GeoProfile Daemon.

Polls the MDM device list on a fixed interval and reconciles every device
against its active policy. Optionally serves the REST API.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from geoprofile import __version__
from geoprofile.config import GeoProfileConfig, load_config, validate_config
from geoprofile.core.processor import ConnectionProcessor, create_processor
from geoprofile.core.reconciler import ReconciliationResult
from geoprofile.mdm.client import DeviceAPI, SimpleMDMClient
from geoprofile.notify import NtfyNotifier
from geoprofile.store.database import PolicyStore

logger = logging.getLogger("geoprofile")


class GeoProfileDaemon:
    """
    Main GeoProfile daemon.

    Owns the polling loop. Reconciliations for different devices run
    concurrently; reconciliations for the same device are serialized.
    """

    def __init__(
        self,
        config: GeoProfileConfig,
        device_api: DeviceAPI | None = None,
        store: PolicyStore | None = None,
        max_concurrency: int = 5,
    ) -> None:
        """
        Initialize daemon with configuration.

        Args:
            config: Validated configuration object
            device_api: Device API client (built from config if None)
            store: Policy store (opened from config if None)
            max_concurrency: Devices reconciled in parallel per poll
        """
        self.config = config
        self._setup_logging()

        self._store = store
        self._device_api = device_api
        self._processor: ConnectionProcessor | None = None
        self._notifier: NtfyNotifier | None = None
        self._api_server: Any = None

        self._device_locks: dict[str, asyncio.Lock] = {}
        self._semaphore = asyncio.Semaphore(max_concurrency)

        # State
        self.running = False
        self._shutdown_event = asyncio.Event()
        self._stats: dict[str, Any] = {
            "polls": 0,
            "poll_errors": 0,
            "devices_processed": 0,
            "start_time": None,
            "last_poll": None,
        }

    def _setup_logging(self) -> None:
        """Configure logging based on config."""
        level = getattr(logging, self.config.daemon.log_level.upper(), logging.INFO)
        handlers: list[logging.Handler] = [logging.StreamHandler()]
        if self.config.daemon.log_file:
            handlers.append(logging.FileHandler(self.config.daemon.log_file))
        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
            handlers=handlers,
        )

    @property
    def store(self) -> PolicyStore:
        """Get or open the policy store."""
        if self._store is None:
            db_path = Path(self.config.store.path)
            db_path.parent.mkdir(parents=True, exist_ok=True)
            self._store = PolicyStore(
                db_path,
                wal_mode=self.config.store.wal_mode,
                history_limit=self.config.store.history_limit,
            )
        return self._store

    @property
    def device_api(self) -> DeviceAPI:
        """Get or create the Device API client."""
        if self._device_api is None:
            self._device_api = SimpleMDMClient.from_config(self.config.device_api)
        return self._device_api

    @property
    def processor(self) -> ConnectionProcessor:
        """Get or build the connection processor."""
        if self._processor is None:
            self._processor = create_processor(self.config, self.device_api, self.store)
            if self.config.notify.enabled:
                self._notifier = NtfyNotifier.from_config(self.config.notify)
                self._processor.add_async_post_hook(self._notifier.notify_result)
        return self._processor

    async def start(self) -> None:
        """Start the daemon and all services."""
        logger.info("Starting GeoProfile daemon v%s", __version__)
        self.running = True
        self._stats["start_time"] = datetime.now(timezone.utc)
        self._shutdown_event.clear()

        logger.info("Opening store: %s", self.config.store.path)
        default = self.store.ensure_default_policy()
        policies = self.store.load_policies()
        logger.info("Loaded %d policies (default: %s)", len(policies), default.name)

        _ = self.processor

        if self.config.api.enabled:
            await self._start_api_server()

        logger.info("Polling devices every %.0fs", self.config.daemon.poll_interval)

    async def stop(self) -> None:
        """Stop the daemon gracefully."""
        logger.info("Stopping GeoProfile daemon...")
        self.running = False
        self._shutdown_event.set()

        if self._api_server is not None:
            self._api_server.should_exit = True

        if self._notifier is not None:
            await self._notifier.close()

        close = getattr(self._device_api, "close", None)
        if close is not None:
            await close()

        if self._store is not None:
            self._store.close()

        logger.info("Daemon stopped")

    async def run(self) -> None:
        """Main daemon loop - poll devices until shutdown."""
        await self.start()

        try:
            while self.running:
                await self.poll_once()
                try:
                    await asyncio.wait_for(
                        self._shutdown_event.wait(),
                        timeout=self.config.daemon.poll_interval,
                    )
                except asyncio.TimeoutError:
                    pass

        except asyncio.CancelledError:
            logger.info("Daemon loop cancelled")
        except Exception as e:
            logger.error("Daemon error: %s", e, exc_info=True)
        finally:
            await self.stop()

    async def poll_once(self) -> list[ReconciliationResult]:
        """
        Reconcile every enrolled device once.

        Returns:
            Results for the devices processed in this poll
        """
        self._stats["polls"] += 1
        self._stats["last_poll"] = datetime.now(timezone.utc)

        try:
            devices = await self.device_api.list_devices()
        except Exception as e:
            self._stats["poll_errors"] += 1
            logger.error("Failed to list devices: %s", e)
            return []

        logger.debug("Poll found %d devices", len(devices))
        results = await asyncio.gather(
            *(self.handle_device(d.id, d.last_seen_ip) for d in devices)
        )
        return list(results)

    async def handle_device(
        self,
        device_id: str,
        observed_ip: str | None,
    ) -> ReconciliationResult:
        """
        Reconcile one device, serialized per device.

        Args:
            device_id: Device identifier
            observed_ip: Device's observed IP address

        Returns:
            ReconciliationResult from the processor
        """
        device_id = str(device_id)
        lock = self._device_locks.setdefault(device_id, asyncio.Lock())

        async with self._semaphore, lock:
            result = await self.processor.process_device_connection(device_id, observed_ip)

        self._stats["devices_processed"] += 1
        if result.changed:
            logger.info(result.summary())
        return result

    async def _start_api_server(self) -> None:
        """Start the FastAPI server (requires api dependencies)."""
        import uvicorn

        from geoprofile.api import configure_services, create_app

        logger.info("Starting API server on %s:%s", self.config.api.host, self.config.api.port)

        app = create_app(
            debug=self.config.daemon.log_level == "debug",
            cors_origins=self.config.api.cors_origins,
        )
        configure_services(
            app=app,
            store=self.store,
            processor=self.processor,
            api_key=self.config.api.api_key,
        )

        config = uvicorn.Config(
            app=app,
            host=self.config.api.host,
            port=self.config.api.port,
            log_level=self.config.daemon.log_level,
            access_log=False,
        )
        self._api_server = uvicorn.Server(config)
        asyncio.create_task(self._api_server.serve())

        logger.info("API server started")

    def handle_signal(self, signum: int) -> None:
        """Handle termination signals."""
        sig_name = signal.Signals(signum).name
        logger.info("Received signal %s, initiating shutdown", sig_name)
        self.running = False
        self._shutdown_event.set()

    def get_statistics(self) -> dict[str, Any]:
        """Get daemon statistics."""
        uptime = None
        if self._stats["start_time"]:
            uptime = (datetime.now(timezone.utc) - self._stats["start_time"]).total_seconds()

        return {
            **self._stats,
            "uptime_seconds": uptime,
            "running": self.running,
            "processor": self._processor.get_statistics() if self._processor else {},
        }


async def run_daemon(config: GeoProfileConfig) -> int:
    """Run the daemon with the given configuration."""
    daemon = GeoProfileDaemon(config)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda s=sig: daemon.handle_signal(s))

    try:
        await daemon.run()
    except Exception as e:
        logger.exception("Daemon crashed: %s", e)
        return 1

    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the daemon."""
    parser = argparse.ArgumentParser(
        prog="geoprofile-daemon",
        description="GeoProfile policy reconciliation daemon",
    )
    parser.add_argument(
        "-V", "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-c", "--config",
        metavar="FILE",
        help="Path to configuration file",
    )
    parser.add_argument(
        "-i", "--interval",
        type=float,
        help="Override poll interval in seconds",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.interval:
        config.daemon.poll_interval = args.interval
    if args.verbose:
        config.daemon.log_level = "debug"

    errors = validate_config(config)
    if not config.device_api.api_key:
        errors.append("SimpleMDM API key required (set SIMPLEMDM_API_KEY)")
    if errors:
        print("Configuration errors:", file=sys.stderr)
        for error in errors:
            print(f"  - {error}", file=sys.stderr)
        return 1

    return asyncio.run(run_daemon(config))


if __name__ == "__main__":
    sys.exit(main())
