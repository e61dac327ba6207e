"""Application bootstrap for compare-revisions.

Wires all components in dependency order and manages the asyncio lifecycle.
Startup order: settings -> logging -> config document -> git store
              -> cluster differ -> REST

Shutdown is graceful: components are stopped in reverse startup order and
each stop error is caught and logged independently.
"""

from __future__ import annotations

import asyncio
import signal
from typing import TYPE_CHECKING

from compare_revisions.config import load_app_config, load_config_file
from compare_revisions.errors import ConfigurationError
from compare_revisions.models.config import AppConfig
from compare_revisions.observability.logging import get_logger, setup_logging

if TYPE_CHECKING:
    import structlog

    from compare_revisions.engine.differ import ClusterDiffer
    from compare_revisions.git.store import GitStore

_SHUTDOWN_GRACE_SECONDS = 15


class _ComponentError(Exception):
    """Raised when a mandatory component fails to start."""

    def __init__(self, component: str, cause: Exception) -> None:
        super().__init__(f"Component '{component}' failed to start: {cause}")
        self.component = component
        self.cause = cause


class CompareRevisionsApp:
    """Application root.  Owns every component and coordinates their lifecycle.

    Calling ``stop()`` on an app that was never started (or already stopped)
    is safe.
    """

    def __init__(self) -> None:
        self.config: AppConfig | None = None

        self._store: GitStore | None = None
        self._differ: ClusterDiffer | None = None
        self._rest_server: object | None = None

        # Background tasks that must be cancelled on shutdown
        self._background_tasks: list[asyncio.Task[None]] = []

        self._running = False
        self._log: structlog.stdlib.BoundLogger | None = None

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start all components in dependency order.

        Raises _ComponentError if a mandatory component cannot start.
        """
        # --- 1. Settings ------------------------------------------------
        self.config = load_app_config()

        # --- 2. Logging -------------------------------------------------
        setup_logging(self.config.log.level)
        self._log = get_logger("app")
        self._log.info("compare-revisions starting", version=_version())

        # --- 3. Git store -----------------------------------------------
        await self._start_store()

        # --- 4. Cluster differ ------------------------------------------
        await self._start_differ()

        # --- 5. REST API ------------------------------------------------
        await self._start_rest()

        self._running = True
        self._log.info("compare-revisions started", port=self.config.api.port)

    async def _start_store(self) -> None:
        assert self._log is not None
        assert self.config is not None
        try:
            from compare_revisions.git.runner import SubprocessGitRunner
            from compare_revisions.git.store import GitStore

            root = self.config.git.repo_dir
            root.mkdir(parents=True, exist_ok=True)
            runner = SubprocessGitRunner(timeout=self.config.git.timeout_seconds)
            self._store = GitStore(root, runner=runner)
            self._log.info("git store ready", root=str(self._store.root))
        except Exception as exc:
            raise _ComponentError("git_store", exc) from exc

    async def _start_differ(self) -> None:
        """Load the configuration document and start the reconciliation loop.

        A configuration error here is fatal.
        """
        assert self._log is not None
        assert self.config is not None
        assert self._store is not None
        try:
            from compare_revisions.engine.differ import ClusterDiffer

            document = load_config_file(self.config.config_file)
            differ = ClusterDiffer(document, self._store)
            await differ.start()
            self._differ = differ
            self._log.info(
                "cluster differ started",
                config_repo=document.config_repo.url.to_text(),
                source_env=document.config_repo.source_env.name,
                target_env=document.config_repo.target_env.name,
            )
        except ConfigurationError as exc:
            raise _ComponentError("config", exc) from exc
        except Exception as exc:
            raise _ComponentError("differ", exc) from exc

    async def _start_rest(self) -> None:
        """Start the uvicorn REST server."""
        assert self._log is not None
        assert self.config is not None
        assert self._differ is not None
        try:
            import uvicorn

            from compare_revisions.api import create_app

            fastapi_app = create_app(differ=self._differ, config=self.config)
            uv_config = uvicorn.Config(
                app=fastapi_app,
                host=self.config.api.host,
                port=self.config.api.port,
                log_config=None,  # structlog handles all logging
                access_log=False,
            )
            server = uvicorn.Server(uv_config)
            task = asyncio.create_task(server.serve(), name="rest-server")
            self._background_tasks.append(task)
            self._rest_server = server
            self._log.info("rest api started", port=self.config.api.port)
        except Exception as exc:
            raise _ComponentError("rest", exc) from exc

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        """Gracefully stop all components in reverse startup order."""
        if not self._running and self._log is None:
            return

        log = self._log or get_logger("app")
        log.info("compare-revisions shutting down")

        self._running = False

        if self._rest_server is not None:
            self._rest_server.should_exit = True  # type: ignore[attr-defined]

        # Stop the differ first so no new git work starts while we wait for
        # the server to drain.
        await self._stop_component("differ", self._differ)
        self._differ = None

        if self._background_tasks:
            _done, pending = await asyncio.wait(self._background_tasks, timeout=_SHUTDOWN_GRACE_SECONDS)
            for task in pending:
                task.cancel()
            await asyncio.gather(*self._background_tasks, return_exceptions=True)
        self._background_tasks.clear()
        self._rest_server = None

        log.info("compare-revisions stopped")

    async def _stop_component(self, name: str, component: object | None) -> None:
        """Call stop() on a component if it has that method, catching all errors."""
        if component is None:
            return
        log = self._log or get_logger("app")
        stop_fn = getattr(component, "stop", None)
        if stop_fn is None:
            return
        try:
            result = stop_fn()
            if asyncio.iscoroutine(result):
                await asyncio.wait_for(result, timeout=_SHUTDOWN_GRACE_SECONDS)
        except TimeoutError:
            log.warning("component stop timed out", component=name, timeout=_SHUTDOWN_GRACE_SECONDS)
        except Exception as exc:
            log.error("component stop raised an error", component=name, error=str(exc))

    @property
    def running(self) -> bool:
        return self._running


def _version() -> str:
    from compare_revisions import __version__

    return __version__


# ---------------------------------------------------------------------------
# Async entrypoint
# ---------------------------------------------------------------------------


async def main() -> None:
    """Create the app, register OS signals, run until shutdown is requested."""
    app = CompareRevisionsApp()
    loop = asyncio.get_running_loop()
    shutdown = asyncio.Event()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, shutdown.set)

    try:
        await app.start()
        await shutdown.wait()
    except _ComponentError as exc:
        log = get_logger("app")
        log.critical(
            "fatal startup error",
            component=exc.component,
            error=str(exc.cause),
        )
        await app.stop()
        raise SystemExit(1) from exc
    finally:
        if app.running:
            await app.stop()


def run() -> None:
    """Console-script entry point."""
    asyncio.run(main())
