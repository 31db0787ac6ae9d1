"""Running MetaEditor and collecting its log.

MetaEditor reports nothing useful on stdout; results go to a UTF-16 log file
which may only be flushed after the process has exited. ``ProcessOrchestrator``
therefore waits for exit (enforcing a hard deadline for Wine runs, where a
hung wineserver is common) and then polls for the log with bounded retries.

Nothing here raises on compiler failure: launch errors, timeouts and missing
logs all come back inside ``ProcessResult``.
"""

import codecs
import logging
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

import psutil

from ..config import Flavor, WineConfig
from ..errors import CompileTimeoutError, LaunchError, LogMissingError, MqlBuildError
from ..subprocess_utils import platform_command, safe_popen
from .wine import NativePathTranslator, PathTranslator, wine_environment

logger = logging.getLogger(__name__)

LOG_POLL_ATTEMPTS = 30
LOG_POLL_INTERVAL = 0.1
LOG_SETTLE_DELAY = 0.05
KILL_GRACE_PERIOD = 2.0

QUOTED_FLAGS = ("/compile:", "/log:", "/inc:")


@dataclass
class CompileJob:
    """One compiler invocation.

    Attributes:
        target: Root file handed to /compile:
        flavor: Dialect, for reporting
        log_file: Where MetaEditor writes its log (``<stem>.log`` next to the target)
        binary: MetaEditor executable (host path, also under Wine)
        include_dir: Optional /inc: directory
        timeout: Hard deadline in seconds, enforced only for Wine runs
        portable: Pass /portable
        wine: Wine settings when the job runs through the shim
    """

    target: Path
    flavor: Flavor
    log_file: Path
    binary: str
    include_dir: str = ""
    timeout: Optional[float] = None
    portable: bool = False
    wine: Optional[WineConfig] = None


@dataclass
class ProcessResult:
    """Outcome of ProcessOrchestrator.run.

    ``success`` means the log was read; compile errors inside the log are the
    parser's business. ``launch_error`` is what went wrong with the process
    itself (it may be set even when the log was read), ``error`` is why there
    is no log.
    """

    success: bool
    log_contents: Optional[str] = None
    launch_error: Optional[MqlBuildError] = None
    error: Optional[MqlBuildError] = None
    stderr: str = ""
    returncode: Optional[int] = None
    timed_out: bool = False
    duration: float = 0.0


def log_file_for(target: Path) -> Path:
    """MetaEditor names the log after the target without its extension."""
    return target.with_suffix(".log")


def quote_flag(arg: str) -> str:
    """Wrap the value of /compile:, /log: and /inc: in quotes, once."""
    for flag in QUOTED_FLAGS:
        if arg.lower().startswith(flag):
            value = arg[len(flag) :]
            if value.startswith('"') and value.endswith('"'):
                return arg
            return f'{arg[: len(flag)]}"{value}"'
    return arg


def _translate(translator: PathTranslator, path: str, label: str) -> str:
    result = translator.translate(path)
    if not result.success:
        logger.warning(f"[Wine] Path conversion failed for {label} path '{path}'; using original path as fallback")
    return result.translated_path


def build_command(job: CompileJob, translator: Optional[PathTranslator] = None) -> list[str]:
    """Argument list for ``job``.

    Under Wine every path is translated to Windows dialect first; the
    MetaEditor binary itself stays a host path, which Wine accepts.
    """
    if job.wine is not None:
        translator = translator or NativePathTranslator()
        target = _translate(translator, str(job.target), "compile")
        log_file = _translate(translator, str(job.log_file), "log")
        include_dir = _translate(translator, job.include_dir, "include") if job.include_dir else ""
        prefix = [job.wine.binary, job.binary]
    else:
        target, log_file, include_dir = str(job.target), str(job.log_file), job.include_dir
        prefix = [job.binary]

    args = [f"/compile:{target}", f"/log:{log_file}"]
    if include_dir:
        args.append(f"/inc:{include_dir}")
    if job.portable:
        args.append("/portable")
    return prefix + [quote_flag(a) for a in args]


def build_run_command(job: CompileJob, translator: Optional[PathTranslator] = None) -> list[str]:
    """Second launch for compile-and-run: ``/compile:`` only, no log."""
    if job.wine is not None:
        target = _translate(translator or NativePathTranslator(), str(job.target), "compile")
        return [job.wine.binary, job.binary, quote_flag(f"/compile:{target}")]
    return [job.binary, quote_flag(f"/compile:{job.target}")]


def decode_log(raw: bytes) -> str:
    """Decode a MetaEditor log.

    Logs are UTF-16 (little endian unless a BOM says otherwise). Data with no
    NUL bytes or an odd length cannot be UTF-16 and is read as UTF-8.
    """
    if raw.startswith(codecs.BOM_UTF16_LE):
        return raw[2:].decode("utf-16-le", errors="replace")
    if raw.startswith(codecs.BOM_UTF16_BE):
        return raw[2:].decode("utf-16-be", errors="replace")
    if raw.startswith(codecs.BOM_UTF8):
        return raw[3:].decode("utf-8", errors="replace")
    if len(raw) % 2 or b"\x00" not in raw:
        return raw.decode("utf-8", errors="replace")
    return raw.decode("utf-16-le", errors="replace")


def delete_log(log_file: Path) -> bool:
    try:
        log_file.unlink()
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.warning(f"Failed to remove log file {log_file}: {e}")
        return False


def kill_process_tree(pid: int, grace: float = KILL_GRACE_PERIOD) -> int:
    """Terminate ``pid`` and its descendants, then kill whatever survives ``grace``.

    Returns:
        Number of processes signalled
    """
    try:
        root = psutil.Process(pid)
        children = root.children(recursive=True)
    except psutil.NoSuchProcess:
        logger.debug(f"Process {pid} already terminated")
        return 0

    # Children first (bottom-up to avoid orphans)
    processes = list(reversed(children)) + [root]
    signalled = []
    for proc in processes:
        try:
            proc.terminate()
            signalled.append(proc)
        except psutil.NoSuchProcess:
            pass
        except psutil.AccessDenied as e:
            logger.warning(f"Failed to terminate process {proc.pid}: {e}")

    _gone, alive = psutil.wait_procs(signalled, timeout=grace)
    if alive:
        logger.warning(f"Force killing {len(alive)} processes still alive after {grace:g}s")
    for proc in alive:
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            pass
        except psutil.AccessDenied as e:
            logger.warning(f"Failed to force kill process {proc.pid}: {e}")
    return len(signalled)


def launch_detached(command: list[str], env: Optional[dict[str, str]] = None) -> Optional[LaunchError]:
    """Start ``command`` without waiting for it. Returns the launch error, if any."""
    try:
        safe_popen(
            platform_command(command),
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            env=env,
        )
    except OSError as e:
        return LaunchError.from_os_error(command[0], e)
    logger.debug(f"Launched {command[0]}")
    return None


class ProcessOrchestrator:
    """Spawns MetaEditor for a CompileJob and returns its log.

    Example:
        >>> orchestrator = ProcessOrchestrator()
        >>> result = orchestrator.run(job)
        >>> if result.success:
        ...     parsed = parse_log(result.log_contents, check_mode=True)
    """

    def __init__(
        self,
        translator: Optional[PathTranslator] = None,
        delete_logs: bool = False,
        poll_attempts: int = LOG_POLL_ATTEMPTS,
        poll_interval: float = LOG_POLL_INTERVAL,
        settle_delay: float = LOG_SETTLE_DELAY,
        kill_grace: float = KILL_GRACE_PERIOD,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.translator = translator or NativePathTranslator()
        self.delete_logs = delete_logs
        self.poll_attempts = poll_attempts
        self.poll_interval = poll_interval
        self.settle_delay = settle_delay
        self.kill_grace = kill_grace
        self.sleep = sleep

    def wait_for_log(self, log_file: Path) -> bool:
        """Poll for the log; MetaEditor may flush it after exiting."""
        for attempt in range(self.poll_attempts):
            if log_file.exists():
                # Appeared late: give the writer a moment to finish
                if attempt > 0:
                    self.sleep(self.settle_delay)
                return True
            self.sleep(self.poll_interval)
        return log_file.exists()

    def _execute(self, job: CompileJob, command: list[str]) -> ProcessResult:
        env = wine_environment(job.wine.prefix) if job.wine is not None else None
        # Only Wine runs get a deadline; native MetaEditor is trusted to exit
        timeout = job.timeout if job.wine is not None else None

        try:
            proc = safe_popen(
                command if job.wine is not None else platform_command(command),
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                env=env,
            )
        except OSError as e:
            error = LaunchError.from_os_error(command[0], e)
            logger.error(str(error))
            return ProcessResult(success=False, launch_error=error)

        try:
            _stdout, stderr = proc.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            logger.warning(f"[Wine] Compilation timed out after {timeout:g} seconds. Killing process...")
            kill_process_tree(proc.pid, self.kill_grace)
            try:
                _stdout, stderr = proc.communicate(timeout=self.kill_grace)
            except subprocess.TimeoutExpired:
                proc.kill()
                stderr = b""
            return ProcessResult(
                success=False,
                launch_error=CompileTimeoutError(timeout or 0),
                stderr=(stderr or b"").decode("utf-8", errors="replace"),
                returncode=proc.returncode,
                timed_out=True,
            )

        result = ProcessResult(
            success=False,
            stderr=(stderr or b"").decode("utf-8", errors="replace"),
            returncode=proc.returncode,
        )
        if proc.returncode != 0:
            result.launch_error = LaunchError(f"Process exited with code {proc.returncode}")
        return result

    def run(self, job: CompileJob) -> ProcessResult:
        """Compile ``job`` and read its log. Never raises."""
        command = build_command(job, self.translator if job.wine is not None else None)
        logger.debug(f"Running: {' '.join(command)}")

        # A stale log from an earlier run must not pass for this run's output
        delete_log(job.log_file)

        start = time.monotonic()
        result = self._execute(job, command)

        if result.stderr.strip():
            logger.warning(f"Stderr: {result.stderr.strip()}")

        if not self.wait_for_log(job.log_file):
            result.error = LogMissingError(job.log_file, cause=result.launch_error)
            logger.error(str(result.error))
            result.duration = time.monotonic() - start
            return result

        try:
            result.log_contents = decode_log(job.log_file.read_bytes())
            result.success = True
        except OSError as e:
            result.error = LogMissingError(job.log_file, cause=LaunchError(f"Failed to read log file: {e}"))
            logger.error(f"Failed to read log file {job.log_file}: {e}")

        if self.delete_logs and result.success:
            delete_log(job.log_file)

        result.duration = time.monotonic() - start
        return result
