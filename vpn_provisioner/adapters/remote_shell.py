from __future__ import annotations

import asyncio
import errno
import logging
import socket
import time
from typing import Any, Callable

import paramiko
from paramiko.ssh_exception import NoValidConnectionsError

from ..errors import (
    HostAuthError,
    HostConnectionError,
    ProvisioningError,
    RemoteScriptError,
    SessionTimeoutError,
)
from ..models import RawOutput, ServerTarget

logger = logging.getLogger(__name__)

_READ_CHUNK = 32768
_POLL_INTERVAL = 0.05
_UNREACHABLE_ERRNOS = {errno.EHOSTUNREACH, errno.ENETUNREACH}


class Settlement:
    """Single-assignment holder for the outcome of one remote call.

    Completion, failure and the watchdog all race to call ``settle``; the
    first one wins and every later call returns False. Must be used from the
    event loop thread.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self._future: asyncio.Future = loop.create_future()

    @property
    def settled(self) -> bool:
        return self._future.done()

    def settle(self, value: Any = None, exc: BaseException | None = None) -> bool:
        if self._future.done():
            return False
        if exc is not None:
            self._future.set_exception(exc)
        else:
            self._future.set_result(value)
        return True

    async def wait(self) -> Any:
        return await self._future


def classify_connect_error(exc: BaseException, port: int = 22) -> ProvisioningError:
    if isinstance(exc, paramiko.AuthenticationException):
        return HostAuthError("Password root VPS salah. Update password di database.", detail=str(exc))
    if isinstance(exc, socket.gaierror):
        return HostConnectionError(
            "Server tidak ditemukan. Cek domain/IP server.", kind="unreachable", detail=str(exc)
        )
    if isinstance(exc, OSError) and exc.errno in _UNREACHABLE_ERRNOS:
        return HostConnectionError(
            "Server tidak ditemukan. Cek domain/IP server.", kind="unreachable", detail=str(exc)
        )
    if isinstance(exc, (NoValidConnectionsError, ConnectionRefusedError, socket.timeout, TimeoutError)):
        return HostConnectionError(
            f"Tidak bisa koneksi ke server. Cek apakah server online dan port {port} terbuka.",
            kind="refused",
            detail=str(exc),
        )
    return HostConnectionError(f"Gagal koneksi SSH: {exc}", kind="generic", detail=str(exc))


class RemoteShell:
    """Runs one script per call over a fresh SSH session."""

    def __init__(
        self,
        port: int = 22,
        username: str = "root",
        ready_timeout: float = 30.0,
        keepalive: int = 10,
        drain_timeout: float = 5.0,
        client_factory: Callable[[], Any] = paramiko.SSHClient,
    ) -> None:
        self.port = port
        self.username = username
        self.ready_timeout = ready_timeout
        self.keepalive = keepalive
        self.drain_timeout = drain_timeout
        self._client_factory = client_factory

    @classmethod
    def from_settings(cls, settings) -> "RemoteShell":
        return cls(
            port=settings.ssh_port,
            username=settings.ssh_username,
            ready_timeout=settings.ssh_ready_timeout,
            keepalive=settings.ssh_keepalive,
        )

    async def execute(
        self,
        target: ServerTarget,
        script: str,
        timeout: float,
        on_ready: Callable[[], Any] | None = None,
    ) -> RawOutput:
        """Run `script` on `target` and return its output.

        Raises a ProvisioningError subclass for every classified failure.
        `on_ready` is called on the loop thread once the session is
        authenticated, unless the call has already been settled.
        """
        loop = asyncio.get_running_loop()
        settlement = Settlement(loop)
        client = self._client_factory()

        def on_timeout() -> None:
            exc = SessionTimeoutError("Timeout koneksi ke server. Pastikan server online dan password benar.")
            if settlement.settle(exc=exc):
                logger.error("Watchdog fired after %ss for %s, closing session", timeout, target.domain)
                self._close(client)

        def deliver(value: RawOutput | None, exc: BaseException | None) -> None:
            if not settlement.settle(value, exc):
                logger.debug("Late result from %s discarded", target.domain)

        def post(value: RawOutput | None, exc: BaseException | None) -> None:
            try:
                loop.call_soon_threadsafe(deliver, value, exc)
            except RuntimeError:
                # Loop is gone; the caller already has its answer.
                logger.debug("Event loop closed before result from %s arrived", target.domain)

        def ready() -> None:
            if on_ready is not None and not settlement.settled:
                on_ready()

        def connected() -> None:
            try:
                loop.call_soon_threadsafe(ready)
            except RuntimeError:
                logger.debug("Event loop closed before %s became ready", target.domain)

        def work() -> None:
            try:
                output = self._run(client, target, script, connected)
            except ProvisioningError as exc:
                post(None, exc)
            except Exception as exc:
                logger.exception("Unexpected SSH failure on %s", target.domain)
                post(None, HostConnectionError(f"Gagal koneksi SSH: {exc}", detail=repr(exc)))
            else:
                post(output, None)
            finally:
                self._close(client)

        watchdog = loop.call_later(timeout, on_timeout)
        worker = loop.run_in_executor(None, work)
        try:
            return await settlement.wait()
        except SessionTimeoutError:
            await self._drain(worker, target)
            raise
        except asyncio.CancelledError:
            self._close(client)
            raise
        finally:
            watchdog.cancel()

    async def _drain(self, worker: asyncio.Future, target: ServerTarget) -> None:
        # Session is closed; the host lock is held until the worker has unwound.
        done, _ = await asyncio.wait({worker}, timeout=self.drain_timeout)
        if not done:
            logger.warning("Worker for %s still running %ss after timeout", target.domain, self.drain_timeout)

    def _run(self, client: Any, target: ServerTarget, script: str, connected: Callable[[], None]) -> RawOutput:
        logger.info("Connecting to %s as %s", target.domain, self.username)
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(
                hostname=target.domain,
                port=self.port,
                username=self.username,
                password=target.auth,
                timeout=self.ready_timeout,
                banner_timeout=self.ready_timeout,
                auth_timeout=self.ready_timeout,
                look_for_keys=False,
                allow_agent=False,
            )
        except Exception as exc:
            raise classify_connect_error(exc, self.port) from exc
        connected()

        transport = client.get_transport()
        if transport is not None and self.keepalive:
            transport.set_keepalive(self.keepalive)

        try:
            stdin, stdout, _stderr = client.exec_command("bash -s")
            stdin.write(script)
            stdin.flush()
            stdin.channel.shutdown_write()
        except (paramiko.SSHException, OSError) as exc:
            raise RemoteScriptError("Gagal eksekusi command SSH.", detail=str(exc)) from exc

        return self._collect(stdout.channel, target)

    def _collect(self, channel: Any, target: ServerTarget) -> RawOutput:
        out_chunks: list[bytes] = []
        err_chunks: list[bytes] = []
        while True:
            progressed = False
            if channel.recv_ready():
                out_chunks.append(channel.recv(_READ_CHUNK))
                progressed = True
            if channel.recv_stderr_ready():
                chunk = channel.recv_stderr(_READ_CHUNK)
                err_chunks.append(chunk)
                for line in chunk.decode("utf-8", errors="replace").splitlines():
                    if line.strip():
                        logger.warning("stderr %s: %s", target.domain, line)
                progressed = True
            if not progressed:
                if channel.exit_status_ready():
                    break
                time.sleep(_POLL_INTERVAL)

        while channel.recv_ready():
            out_chunks.append(channel.recv(_READ_CHUNK))
        exit_status = channel.recv_exit_status()
        logger.info("Script on %s exited with %s", target.domain, exit_status)
        return RawOutput(
            stdout=b"".join(out_chunks).decode("utf-8", errors="replace"),
            stderr=b"".join(err_chunks).decode("utf-8", errors="replace"),
            exit_status=exit_status,
        )

    @staticmethod
    def _close(client: Any) -> None:
        try:
            client.close()
        except Exception as exc:
            logger.debug("Closing SSH client failed: %s", exc)
