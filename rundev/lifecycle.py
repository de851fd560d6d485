"""
LifecycleManager: create, stop and expire dev sessions.

Manages the session state machine:
- start: validate -> allocate -> provision -> register -> probe -> Running
- stop: claim -> destroy -> release -> unregister
- sweep: periodic expiry of sessions older than the idle timeout
- shutdown: refuse new work and tear down every live session

Stop and sweep share one teardown routine. Races between them are settled
by SessionRegistry.claim(): only one caller gets to tear a session down,
the other observes SessionNotFound.

Usage:
    manager = LifecycleManager(provisioner, PortAllocator(5100, 5199))
    await manager.init()

    session = await manager.start(request)
    await manager.stop(session.session_id)

    await manager.shutdown()
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Union

from rundev import telemetry
from rundev.allocator import NullAllocator, PortAllocator
from rundev.artifacts import normalize_manifest, validate_block_name
from rundev.exceptions import (
    InvalidRequest,
    ProvisionFailed,
    RundevError,
    ServiceShuttingDown,
    SessionNotFound,
    StartupTimeout,
)
from rundev.models import (
    SandboxHandle,
    SandboxSpec,
    Session,
    SessionState,
    StartRequest,
    new_session_id,
)
from rundev.provisioners.base import SandboxProvisioner
from rundev.readiness import ReadinessProber
from rundev.registry import SessionRegistry

logger = logging.getLogger(__name__)

Allocator = Union[PortAllocator, NullAllocator]


@dataclass
class LifecycleConfig:
    """
    Timeouts are in seconds. ``route_prefix`` is set when sessions are
    reached through the multiplexing router; None means each sandbox
    is addressed through its own public URL.
    """

    # Sessions older than this are expired by the sweep (default: 30 min)
    session_timeout_seconds: float = 1800.0

    # Interval between sweeps
    sweep_interval_seconds: float = 60.0

    # Readiness deadline; None uses the provisioner's default
    startup_timeout_seconds: Optional[float] = None

    # Public base URL of this service
    public_url: str = "http://localhost:3002"

    route_prefix: Optional[str] = "/dev"


class LifecycleManager:
    """
    Process-scoped owner of every dev session.

    The manager is the only writer to its registry. Request handlers and
    the background sweep both go through it.
    """

    def __init__(
        self,
        provisioner: SandboxProvisioner,
        allocator: Allocator,
        registry: Optional[SessionRegistry] = None,
        prober: Optional[ReadinessProber] = None,
        config: Optional[LifecycleConfig] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.provisioner = provisioner
        self.allocator = allocator
        self.registry = registry or SessionRegistry()
        self.prober = prober or ReadinessProber()
        self.config = config or LifecycleConfig()
        self._clock = clock
        self._sweep_task: Optional[asyncio.Task] = None
        self._closing = False

    @property
    def accepting(self) -> bool:
        return not self._closing

    @property
    def startup_timeout(self) -> float:
        if self.config.startup_timeout_seconds is not None:
            return self.config.startup_timeout_seconds
        return self.provisioner.startup_timeout

    async def init(self) -> None:
        """Start the background sweep."""
        self._closing = False
        if self._sweep_task is None:
            self._sweep_task = asyncio.create_task(self._sweep_loop())
        logger.info(
            "Lifecycle manager started (backend=%s, timeout=%ss, sweep every %ss)",
            self.provisioner.name,
            self.config.session_timeout_seconds,
            self.config.sweep_interval_seconds,
        )

    async def shutdown(self) -> None:
        """Stop accepting work and tear down every live session, best-effort."""
        self._closing = True
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweep_task
            self._sweep_task = None

        sessions = await self.registry.list_all()
        if sessions:
            logger.info("Shutting down: cleaning up %d sessions", len(sessions))
        await asyncio.gather(
            *(self._teardown(s.session_id, "shutdown") for s in sessions),
            return_exceptions=True,
        )
        await self.provisioner.aclose()
        logger.info("Lifecycle manager stopped")

    def session_url(self, session_id: str, handle: SandboxHandle) -> str:
        """Routable URL handed back to the caller."""
        if self.config.route_prefix is not None:
            return f"{self.config.public_url}{self.config.route_prefix}/{session_id}/"
        if handle.public_url:
            return handle.public_url
        return handle.base_url

    def _validate(self, request: StartRequest) -> None:
        missing = request.missing_fields()
        if missing:
            raise InvalidRequest(
                f"Missing required fields: {', '.join(missing)}", missing=missing
            )
        validate_block_name(request.block_name or "")

    def _new_id(self) -> str:
        session_id = new_session_id()
        while session_id in self.registry:
            session_id = new_session_id()
        return session_id

    async def start(self, request: StartRequest) -> Session:
        """
        Provision a sandbox and wait until its dev server is reachable.

        Raises:
            ServiceShuttingDown: During shutdown.
            InvalidRequest: Required fields missing. Nothing was allocated.
            CapacityExceeded: Resource pool exhausted. Provisioner untouched.
            ProvisionFailed: Backend could not create the unit, or the session
                was stopped while starting.
            StartupTimeout: Dev server never became ready or exited.
        """
        if self._closing:
            raise ServiceShuttingDown("Service is shutting down")
        self._validate(request)

        session_id = self._new_id()
        resource = self.allocator.acquire()
        spec = SandboxSpec(
            session_id=session_id,
            app_id=request.app_id or "",
            block_name=request.block_name or "",
            code_jsx=request.code_jsx or "",
            cli_api_key=request.cli_api_key or "",
            manifest_json=normalize_manifest(request.manifest_json),
            merchant_name=request.merchant_name,
            port=resource,
        )
        logger.info(
            "[%s] Creating session (block=%s, backend=%s, port=%s)",
            session_id,
            spec.block_name,
            self.provisioner.name,
            resource,
        )

        try:
            with telemetry.span("rundev.provision", session_id=session_id):
                handle = await self.provisioner.create(spec)
        except RundevError:
            self.allocator.release(resource)
            raise
        except Exception as e:
            self.allocator.release(resource)
            logger.exception("[%s] Provisioner crashed", session_id)
            raise ProvisionFailed(str(e) or type(e).__name__, backend=self.provisioner.name) from e
        except BaseException:
            self.allocator.release(resource)
            raise

        session = Session(
            session_id=session_id,
            created_at=self._clock(),
            block_name=spec.block_name,
            configuration_id=request.configuration_id,
            handle=handle,
            url=self.session_url(session_id, handle),
            resource=resource,
        )
        # Registered before readiness so a concurrent stop or sweep can
        # still find and destroy it.
        await self.registry.insert(session)

        stopped = ProvisionFailed(
            "Session was stopped during startup", backend=self.provisioner.name
        )
        try:
            await self._await_ready(session)
        except StartupTimeout as e:
            if session.state is not SessionState.PROVISIONING:
                raise stopped from e
            logger.warning("[%s] Startup failed: %s", session_id, e)
            await self._teardown(session_id, "startup_failed")
            raise
        except BaseException:
            await self._teardown(session_id, "startup_failed")
            raise

        if not await self.registry.transition(
            session_id, SessionState.PROVISIONING, SessionState.RUNNING
        ):
            raise stopped
        logger.info("[%s] Session started at %s", session_id, session.url)
        return session

    async def _await_ready(self, session: Session) -> None:
        handle = session.handle
        if not await self.provisioner.inspect_running(handle):
            raise StartupTimeout(
                "Dev server exited immediately after creation",
                exit_code=handle.exit_code,
            )
        with telemetry.span("rundev.readiness", session_id=session.session_id):
            await self.prober.wait_until_ready(
                handle,
                self.startup_timeout,
                abandoned=lambda: session.state is not SessionState.PROVISIONING,
            )

    async def stop(self, session_id: str) -> None:
        """
        Tear down one session.

        Raises:
            SessionNotFound: If the session is unknown or already being torn
                down by another caller.
        """
        if not await self._teardown(session_id, "stopped"):
            raise SessionNotFound(f"Session not found: {session_id}")

    async def sweep(self) -> List[str]:
        """Expire every session older than the idle timeout. Returns their ids."""
        now = self._clock()
        timeout = self.config.session_timeout_seconds
        expired = [
            s.session_id
            for s in await self.registry.list_all()
            if s.age(now) > timeout
        ]
        if not expired:
            return []

        for session_id in expired:
            logger.info("[%s] Session expired", session_id)
        # Teardowns run side by side so one slow backend does not hold up the rest.
        results = await asyncio.gather(
            *(self._teardown(session_id, "expired") for session_id in expired),
            return_exceptions=True,
        )
        swept = []
        for session_id, result in zip(expired, results):
            if isinstance(result, BaseException):
                logger.error("[%s] Expiry teardown failed: %r", session_id, result)
            elif result:
                swept.append(session_id)
        return swept

    async def list_sessions(self) -> List[Session]:
        return await self.registry.list_all()

    async def _sweep_loop(self) -> None:
        """Periodically expire old sessions."""
        while True:
            await asyncio.sleep(self.config.sweep_interval_seconds)
            try:
                await self.sweep()
            except Exception:
                logger.exception("Session sweep failed")

    async def _teardown(self, session_id: str, reason: str) -> bool:
        """
        Destroy a session's sandbox and free its resource.

        Idempotent: returns False without side effects if the session is
        gone or another caller is already tearing it down.
        """
        session = await self.registry.claim(session_id)
        if session is None:
            return False

        logger.info("[%s] Cleaning up session (%s)", session_id, reason)
        try:
            with telemetry.span("rundev.teardown", session_id=session_id, reason=reason):
                await self.provisioner.destroy(session.handle)
        except Exception:
            logger.exception("[%s] Error destroying sandbox", session_id)
        finally:
            self.allocator.release(session.resource)
            await self.registry.remove(session_id)
            session.state = SessionState.DESTROYED
        logger.info("[%s] Session cleaned up", session_id)
        return True
