"""Wine compatibility shim support.

MetaEditor is a Windows binary. On Linux and macOS it runs under Wine, which
needs every path argument in Windows dialect (``Z:\\home\\me\\a.mq5``). The
conversion is delegated to ``winepath -w`` inside the configured prefix.

Translation is best-effort: a failed conversion returns the original path and
an error, and the caller carries on in degraded mode.
"""

import logging
import os
import re
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Protocol

from ..config import WineConfig
from ..errors import ConfigurationError
from ..subprocess_utils import child_environment, safe_run

logger = logging.getLogger(__name__)

WINEPATH_TIMEOUT = 10.0

_WINDOWS_DIALECT = re.compile(r"^[A-Za-z]:[/\\]")


@dataclass(frozen=True)
class TranslationResult:
    """Outcome of a path translation.

    ``translated_path`` is always usable: on failure it is the input path.
    """

    translated_path: str
    success: bool
    error: Optional[str] = None


class PathTranslator(Protocol):
    def translate(self, path: str) -> TranslationResult: ...


class NativePathTranslator:
    """Identity translation for hosts that run MetaEditor directly."""

    def translate(self, path: str) -> TranslationResult:
        return TranslationResult(translated_path=str(path), success=True)


def wine_environment(prefix: str = "") -> dict[str, str]:
    """Child environment with WINEPREFIX selecting the isolated profile."""
    return child_environment({"WINEPREFIX": prefix} if prefix else None)


class WinePathTranslator:
    """Converts host paths to Windows paths via ``<wine> winepath -w``."""

    def __init__(self, wine_binary: str = "wine64", prefix: str = "", timeout: float = WINEPATH_TIMEOUT):
        self.wine_binary = wine_binary
        self.prefix = prefix
        self.timeout = timeout

    def translate(self, path: str) -> TranslationResult:
        path = str(path)
        try:
            result = safe_run(
                [self.wine_binary, "winepath", "-w", path],
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env=wine_environment(self.prefix),
            )
        except subprocess.TimeoutExpired:
            error = f"[Wine] winepath timed out after {self.timeout:g}s converting {path}"
        except OSError as e:
            error = f"[Wine] Failed to convert path {path} with winepath: {e}"
        else:
            translated = result.stdout.strip()
            if result.returncode == 0 and translated:
                logger.debug(f"winepath: {path} -> {translated}")
                return TranslationResult(translated_path=translated, success=True)
            detail = result.stderr.strip() or f"exit code {result.returncode}"
            error = f"[Wine] Failed to convert path {path} with winepath: {detail}"

        logger.error(error)
        return TranslationResult(translated_path=path, success=False, error=error)


def validate_wine_path(path: str) -> None:
    """Reject MetaEditor paths unusable as a Wine launch argument.

    Wine locates the executable through a host path; a ``C:\\...`` path would be
    silently reinterpreted, so it fails fast here.

    Raises:
        ConfigurationError: If the path is empty or already Windows-dialect
    """
    if not path or not isinstance(path, str):
        raise ConfigurationError("Path is empty or invalid")
    if _WINDOWS_DIALECT.match(path):
        raise ConfigurationError(
            f'Wine mode requires Unix-style paths. Got "{path}". '
            'Use something like "/Users/you/.wine/drive_c/..." instead of "C:\\..."'
        )


@dataclass(frozen=True)
class WineStatus:
    installed: bool
    version: str = ""
    error: Optional[str] = None


def check_wine_installed(wine_binary: str = "wine64", prefix: str = "") -> WineStatus:
    """Probe ``<wine> --version``."""
    try:
        result = safe_run(
            [wine_binary, "--version"],
            capture_output=True,
            text=True,
            timeout=WINEPATH_TIMEOUT,
            env=wine_environment(prefix),
        )
    except FileNotFoundError:
        return WineStatus(
            installed=False,
            error=f'Wine binary not found at "{wine_binary}". Please install Wine or update the Wine.Binary setting.',
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        return WineStatus(installed=False, error=f"Wine check failed: {e}")

    if result.returncode != 0:
        return WineStatus(installed=False, error=f"Wine check failed: {result.stderr.strip() or result.returncode}")
    return WineStatus(installed=True, version=result.stdout.strip())


@dataclass
class WineSetupReport:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    version: str = ""

    @property
    def valid(self) -> bool:
        return not self.errors


def validate_wine_setup(config: WineConfig, metaeditor_path: str = "") -> WineSetupReport:
    """Check Wine installation, prefix and MetaEditor path in one go."""
    report = WineSetupReport()

    status = check_wine_installed(config.binary, config.prefix)
    if status.installed:
        report.version = status.version
        logger.info(f"[Wine] Found Wine: {status.version}")
    else:
        report.errors.append(status.error or "Wine is not installed or not accessible")

    if config.prefix:
        if not os.path.exists(config.prefix):
            report.errors.append(f'Wine prefix not found: "{config.prefix}"')
        elif not (Path(config.prefix) / "system.reg").exists():
            report.warnings.append(f'Wine prefix may not be initialized: "{config.prefix}" (system.reg not found)')

    if metaeditor_path:
        try:
            validate_wine_path(metaeditor_path)
        except ConfigurationError as e:
            report.errors.append(str(e))
        if not os.path.exists(metaeditor_path):
            report.errors.append(f'MetaEditor not found at: "{metaeditor_path}"')

    return report


def translator_for(config: WineConfig) -> PathTranslator:
    """Wine translator when the shim is active, identity otherwise."""
    if config.active():
        return WinePathTranslator(config.binary, config.prefix)
    return NativePathTranslator()
