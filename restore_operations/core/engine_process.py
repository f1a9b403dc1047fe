"""
mongod Process Control

Starts mongod in the special configuration variants a binary restore needs
and hands back a handle that can be waited on or terminated.

A started process is only returned once it answers ``ping``; readiness is
polled with tenacity until the startup timeout expires.
"""

import asyncio
import logging
import socket
from typing import Awaitable, Callable, List, Optional

from pymongo import MongoClient
from pymongo.errors import ConnectionFailure
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_delay, wait_fixed

from ..exceptions import EngineExitError, EngineStartError
from ..models.entities import EngineVariant
from ..utils.cancellation import CancellationToken

logger = logging.getLogger(__name__)

ReadinessProbe = Callable[[str], Awaitable[None]]

# Seconds to wait for a process to exit after SIGTERM before sending SIGKILL
TERMINATE_GRACE_PERIOD = 30.0


def find_free_port(host: str = "127.0.0.1") -> int:
    """Ask the OS for an unused TCP port on ``host``."""
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    with socket.socket(family, socket.SOCK_STREAM) as sock:
        sock.bind((host, 0))
        return sock.getsockname()[1]


def build_uri(host: str, port: int) -> str:
    """Direct-connection URI for a standalone special-mode mongod."""
    address = f"[{host}]" if ":" in host else host
    return f"mongodb://{address}:{port}/?directConnection=true"


async def stop_process(handle: "MongodProcessHandle", grace_period: float = TERMINATE_GRACE_PERIOD) -> int:
    """
    Send SIGTERM to ``handle`` and reap it, escalating to SIGKILL after ``grace_period`` seconds.

    Raises:
        EngineExitError: If the process exited with a non-zero code
    """
    handle.terminate()
    try:
        return await asyncio.wait_for(handle.wait(), grace_period)
    except asyncio.TimeoutError:
        logger.warning(f"mongod (pid {handle.pid}) ignored SIGTERM for {grace_period}s; killing it")
        handle.kill()
        return await handle.wait()


async def ping_with_pymongo(uri: str, timeout_ms: int = 1000) -> None:
    """
    Send one ``ping`` to ``uri``.

    Raises:
        ConnectionFailure: If the server is not reachable yet
    """
    def _ping():
        client = MongoClient(uri, serverSelectionTimeoutMS=timeout_ms, connectTimeoutMS=timeout_ms)
        try:
            client.admin.command("ping")
        finally:
            client.close()

    loop = asyncio.get_running_loop()
    await loop.run_in_executor(None, _ping)


class MongodProcessHandle:
    """
    A running special-mode mongod.

    ``wait`` reaps the process exactly once; later calls return (or raise)
    the cached outcome.

    Attributes:
        variant: Startup variant the process runs in
        uri: Connection string of the process
        port: TCP port the process listens on
    """

    def __init__(self, process: asyncio.subprocess.Process, variant: EngineVariant, uri: str, port: int):
        self._process = process
        self.variant = variant
        self.uri = uri
        self.port = port
        self._wait_task: Optional[asyncio.Future] = None

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode

    async def wait(self) -> int:
        """
        Block until the process exits.

        Returns:
            The exit code (always 0)

        Raises:
            EngineExitError: If the process exited with a non-zero code
        """
        if self._wait_task is None:
            self._wait_task = asyncio.ensure_future(self._process.wait())
        returncode = await asyncio.shield(self._wait_task)

        if returncode != 0:
            raise EngineExitError(
                f"mongod ({self.variant.value}, pid {self.pid}) exited with code {returncode}",
                returncode=returncode,
                pid=self.pid
            )
        logger.info(f"mongod ({self.variant.value}, pid {self.pid}) exited cleanly")
        return returncode

    def terminate(self) -> None:
        """Send SIGTERM if the process is still running."""
        if self._process.returncode is not None:
            return
        try:
            self._process.terminate()
            logger.warning(f"Sent SIGTERM to mongod ({self.variant.value}, pid {self.pid})")
        except ProcessLookupError:
            pass

    def kill(self) -> None:
        if self._process.returncode is not None:
            return
        try:
            self._process.kill()
            logger.warning(f"Sent SIGKILL to mongod ({self.variant.value}, pid {self.pid})")
        except ProcessLookupError:
            pass

    def __repr__(self) -> str:
        return f"MongodProcessHandle(variant={self.variant.value}, pid={self.pid}, uri={self.uri})"


class MongodProcessControl:
    """
    Launches mongod in a restore startup variant.

    Example:
        ```python
        control = MongodProcessControl("mongod", "/etc/mongod-restore.conf", cancel_token=token)
        handle = await control.start_with_variant(EngineVariant.DISABLE_SESSION_CACHE_REFRESH)
        print(handle.uri)
        ```
    """

    def __init__(
        self,
        mongod_binary: str,
        config_path: str,
        host: str = "127.0.0.1",
        port: Optional[int] = None,
        startup_timeout: float = 300.0,
        readiness_poll_interval: float = 1.0,
        readiness_probe: Optional[ReadinessProbe] = None,
        cancel_token: Optional[CancellationToken] = None
    ):
        """
        Args:
            mongod_binary: mongod executable
            config_path: Minimal mongod config (dbPath, storage engine)
            host: Address the process binds to
            port: Port to listen on; a free port is picked per start when None
            startup_timeout: Seconds to wait for the first successful ping
            readiness_poll_interval: Seconds between pings
            readiness_probe: Coroutine pinging a URI; pymongo ``ping`` by default
            cancel_token: Cancellation token of the restore run
        """
        self.mongod_binary = mongod_binary
        self.config_path = config_path
        self.host = host
        self.port = port
        self.startup_timeout = startup_timeout
        self.readiness_poll_interval = readiness_poll_interval
        self._probe = readiness_probe or (
            lambda uri: ping_with_pymongo(uri, int(max(readiness_poll_interval, 0.5) * 1000))
        )
        self._cancel_token = cancel_token or CancellationToken()

    def build_command(self, variant: EngineVariant, port: int) -> List[str]:
        command = [
            self.mongod_binary,
            "--config", self.config_path,
            "--bind_ip", self.host,
            "--port", str(port),
        ]
        for name, value in variant.set_parameters.items():
            command.extend(["--setParameter", f"{name}={value}"])
        return command

    async def start_with_variant(self, variant: EngineVariant) -> MongodProcessHandle:
        """
        Start mongod in ``variant`` and wait until it answers ``ping``.

        Raises:
            EngineStartError: If the process cannot be spawned, exits during
                startup or does not become ready in time
            RestoreCancelledError: If cancelled while waiting for readiness
        """
        self._cancel_token.raise_if_cancelled(f"start mongod ({variant.value})")

        port = self.port or find_free_port(self.host)
        command = self.build_command(variant, port)
        logger.info(f"Starting mongod ({variant.value}): {' '.join(command)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL
            )
        except OSError as e:
            raise EngineStartError(
                f"Cannot spawn {self.mongod_binary}: {e}",
                variant=variant.value
            ) from e

        handle = MongodProcessHandle(process, variant, build_uri(self.host, port), port)
        try:
            await self._wait_until_ready(handle)
        except BaseException:
            await self._reap(handle)
            raise

        logger.info(f"mongod ({variant.value}, pid {handle.pid}) ready at {handle.uri}")
        return handle

    async def _wait_until_ready(self, handle: MongodProcessHandle) -> None:
        retrying = AsyncRetrying(
            stop=stop_after_delay(self.startup_timeout),
            wait=wait_fixed(self.readiness_poll_interval),
            retry=retry_if_exception_type(ConnectionFailure),
            reraise=True
        )
        try:
            async for attempt in retrying:
                with attempt:
                    self._cancel_token.raise_if_cancelled(f"start mongod ({handle.variant.value})")
                    if handle.returncode is not None:
                        raise EngineStartError(
                            f"mongod exited during startup with code {handle.returncode}",
                            variant=handle.variant.value,
                            returncode=handle.returncode
                        )
                    await self._cancel_token.run(self._probe(handle.uri), f"ping {handle.uri}")
        except ConnectionFailure as e:
            raise EngineStartError(
                f"mongod did not become ready within {self.startup_timeout}s: {e}",
                variant=handle.variant.value
            ) from e

    async def _reap(self, handle: MongodProcessHandle) -> None:
        """Terminate a process that failed to start and collect its exit status."""
        try:
            await stop_process(handle)
        except EngineExitError:
            pass
