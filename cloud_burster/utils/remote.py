"""
Remote Command Execution Utilities

Runs bootstrap scripts on freshly created machines over SSH.

This module uses `asyncssh` so no `ssh` binary is needed on the operator
machine.
"""

import asyncio
import base64
import shlex
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Coroutine, Optional, Sequence, TypeVar

import asyncssh
from loguru import logger

from .context import RunContext

T = TypeVar("T")

# Seconds between two cancellation checks while a command runs
CANCEL_POLL_INTERVAL = 0.5


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, str):
        return value
    return str(value)


@dataclass
class CommandResult:
    """Result of a remote command execution"""
    host: str
    success: bool
    stdout: str
    stderr: str
    return_code: int


class RemoteExecutor:
    """
    Executes scripts on remote servers via SSH (asyncssh).

    Host keys are not checked: the machines are brand new and their keys
    unknown.
    """

    def __init__(
        self,
        private_key_b64: str,
        ssh_user: str = "root",
        connect_timeout: float = 10.0,
        keepalive_interval: float = 30.0,
    ):
        """
        Initialize the remote executor.

        Args:
            private_key_b64: base64 encoded private key (OpenSSH or PEM)
            ssh_user: SSH username
            connect_timeout: SSH connect timeout seconds
            keepalive_interval: SSH keepalive interval seconds
        """
        self.private_key_b64 = private_key_b64
        self.ssh_user = ssh_user
        self.connect_timeout = connect_timeout
        self.keepalive_interval = keepalive_interval

    def _run_coro(self, coro: Coroutine[Any, Any, T]) -> T:
        """Run coroutine from sync code.

        If called from within an existing event loop, it runs the coroutine in
        a background thread to avoid "Cannot run the event loop while another
        loop is running".
        """
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return asyncio.run(coro)

        with ThreadPoolExecutor(max_workers=1) as executor:
            fut = executor.submit(asyncio.run, coro)
            return fut.result()

    def _client_key(self) -> asyncssh.SSHKey:
        return asyncssh.import_private_key(base64.b64decode(self.private_key_b64))

    async def _connect(self, host: str, port: int) -> asyncssh.SSHClientConnection:
        return await asyncssh.connect(
            host,
            port=port,
            username=self.ssh_user,
            client_keys=[self._client_key()],
            known_hosts=None,
            connect_timeout=self.connect_timeout,
            keepalive_interval=self.keepalive_interval,
        )

    async def _run_script(
        self,
        host: str,
        port: int,
        script: str,
        args: Sequence[str],
        timeout: float,
        ctx: Optional[RunContext],
    ) -> CommandResult:
        if ctx is not None:
            ctx.check()
        try:
            conn = await self._connect(host, port)
        except (asyncio.TimeoutError, asyncssh.Error, OSError) as e:
            raise ConnectionError(f"ssh {host}:{port} unreachable: {e}") from e

        command = " ".join(["bash", "-s", "--"] + [shlex.quote(a) for a in args])
        async with conn:
            res = await self._wait_command(conn.run(command, input=script, check=False), timeout, ctx)
        exit_status = res.exit_status if res.exit_status is not None else -1
        return CommandResult(
            host=f"{host}:{port}",
            success=exit_status == 0,
            stdout=_as_text(res.stdout),
            stderr=_as_text(res.stderr),
            return_code=int(exit_status),
        )

    async def _wait_command(self, coro: Coroutine[Any, Any, T], timeout: float, ctx: Optional[RunContext]) -> T:
        """Await `coro`, giving up after `timeout` seconds or once `ctx` is cancelled"""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        task = asyncio.ensure_future(coro)
        try:
            while not task.done():
                if ctx is not None:
                    ctx.check()
                left = deadline - loop.time()
                if left <= 0:
                    raise asyncio.TimeoutError(f"remote command still running after {timeout}s")
                await asyncio.wait({task}, timeout=min(left, CANCEL_POLL_INTERVAL))
            return task.result()
        finally:
            if not task.done():
                task.cancel()

    def run_script(
        self,
        host: str,
        script: str,
        port: int = 22,
        args: Optional[Sequence[str]] = None,
        timeout: float = 1800,
        ctx: Optional[RunContext] = None,
    ) -> CommandResult:
        """
        Pipe `script` into `bash -s -- <args>` on the remote host.

        Args:
            host: Host IP
            script: bash script content
            port: SSH port
            args: positional arguments of the script
            timeout: Timeout in seconds for the script to finish
            ctx: cancelling it closes the connection and stops the wait

        Returns:
            CommandResult

        Raises:
            ConnectionError: the SSH connection could not be established
            asyncio.TimeoutError: the script did not finish within `timeout`
            OperationCancelled: the context was cancelled
        """
        logger.debug(f"running a {len(script)} bytes script on {host}:{port}")
        return self._run_coro(self._run_script(host, port, script, list(args or []), timeout, ctx))
