"""
Malware Scanner Oracle
======================

ScanVault never decides on its own whether bytes are malicious. A
Scanner is an external oracle (an antivirus daemon, a multi-engine
lookup service) that returns a verdict and the number of engines that
flagged the content.

The oracle is always invoked under a timeout. Any exception, malformed
verdict or timeout is a scan failure: the upload is refused, never
treated as clean.

Deployments plug in their scanner with SCANVAULT_SCANNER=module:factory,
where factory() returns an object implementing Scanner.
"""

from __future__ import annotations

import importlib
import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable

from scanvault.core.errors import ConfigurationError, OperationTimeout, ScanFailed
from scanvault.security.constants import SCAN_TIMEOUT_SECONDS


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScanVerdict:
    safe: bool
    engine_hits: int = 0

    def __post_init__(self) -> None:
        if self.engine_hits < 0:
            raise ValueError("engine_hits cannot be negative")


@runtime_checkable
class Scanner(Protocol):
    """Protocol for malware scanning oracles."""

    def scan(self, path: Path, filename: str) -> ScanVerdict:
        """
        Scan the file at path.

        Args:
            path: Staged upload, readable for the duration of the call
            filename: Client-supplied name, for engines that use it
        """
        ...


class UnavailableScanner:
    """Placeholder used when no scanner is configured. Every scan fails."""

    def scan(self, path: Path, filename: str) -> ScanVerdict:
        raise ScanFailed("No malware scanner configured")


def load_scanner(import_path: str) -> Scanner:
    """
    Build a scanner from a "package.module:factory" reference.

    Raises:
        ConfigurationError: If the reference cannot be imported or the
            factory does not produce a Scanner
    """
    module_name, sep, attribute = import_path.partition(":")
    if not sep or not module_name or not attribute:
        raise ConfigurationError(f"Scanner reference must be 'module:factory', got {import_path!r}")

    try:
        module = importlib.import_module(module_name)
        factory = getattr(module, attribute)
    except (ImportError, AttributeError) as e:
        raise ConfigurationError(f"Cannot load scanner {import_path!r}: {e}") from e

    scanner = factory()
    if not isinstance(scanner, Scanner):
        raise ConfigurationError(f"{import_path!r} did not return a scanner")
    logger.info("Malware scanner loaded: %s", type(scanner).__name__)
    return scanner


class ScanRunner:
    """
    Runs a scanner on a worker pool with a per-call timeout.

    Usage:
        runner = ScanRunner(scanner, timeout_seconds=30)
        verdict = runner.scan(staged_path, "report.pdf")
        runner.shutdown()

    A timed-out scan keeps its worker until the oracle returns; the
    caller is released immediately.
    """

    __slots__ = ("_scanner", "_timeout", "_executor")

    def __init__(
        self,
        scanner: Scanner,
        timeout_seconds: float = SCAN_TIMEOUT_SECONDS,
        max_workers: int = 4,
    ) -> None:
        self._scanner = scanner
        self._timeout = timeout_seconds
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="scan")

    @property
    def scanner(self) -> Scanner:
        return self._scanner

    def scan(self, path: Path, filename: str) -> ScanVerdict:
        """
        Raises:
            ScanFailed: The oracle raised or returned something other than a verdict
            OperationTimeout: The oracle did not answer in time
        """
        future = self._executor.submit(self._scanner.scan, path, filename)
        try:
            verdict = future.result(timeout=self._timeout)
        except FuturesTimeout as e:
            future.cancel()
            logger.error("Scan of %s timed out after %.1fs", filename, self._timeout)
            raise OperationTimeout(f"Scan exceeded {self._timeout}s") from e
        except ScanFailed:
            raise
        except Exception as e:
            logger.error("Scanner raised for %s: %s", filename, e)
            raise ScanFailed(f"{type(e).__name__}: {e}") from e

        if not isinstance(verdict, ScanVerdict):
            raise ScanFailed(f"Scanner returned {type(verdict).__name__}, not a verdict")
        return verdict

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
