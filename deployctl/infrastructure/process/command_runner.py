"""Async subprocess execution with a hard timeout."""
import asyncio
import logging
import os
import time
from dataclasses import dataclass
from typing import Dict, Optional, Sequence

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    args: Sequence[str]
    returncode: int
    output: str
    duration: float

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandTimeout(RuntimeError):
    def __init__(self, args: Sequence[str], timeout: float, output: str = ""):
        super().__init__(f"Command timed out after {timeout:.0f}s: {' '.join(args)}")
        self.args_ = list(args)
        self.timeout = timeout
        self.output = output


class CommandRunner:
    """Runs external commands (git, docker) with combined stdout/stderr capture."""

    async def run(
        self,
        args: Sequence[str],
        cwd: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        merged_env = {**os.environ, **env} if env else None
        start_time = time.monotonic()
        logger.debug(f"▶️ Running: {' '.join(args)} (cwd={cwd})")

        process = await asyncio.create_subprocess_exec(
            *args,
            cwd=cwd,
            env=merged_env,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            await self._kill(process)
            raise CommandTimeout(args, timeout or 0.0)
        finally:
            # Cancellation from an outer timeout lands here too
            if process.returncode is None:
                await self._kill(process)

        output = stdout.decode("utf-8", errors="replace") if stdout else ""
        return CommandResult(
            args=list(args),
            returncode=process.returncode,
            output=output,
            duration=time.monotonic() - start_time,
        )

    async def _kill(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return
        logger.warning(f"🛑 Killing process {process.pid}")
        try:
            process.kill()
        except ProcessLookupError:
            return
        await process.wait()
