"""Proxy-core runner used to accept or reject generated artifacts.

What:
  Define the :class:`CoreRunner` protocol and a subprocess implementation
  invoking the real ``mihomo`` and ``sing-box`` binaries in their config-check
  modes.

Why:
  Only the proxy core itself knows whether an artifact is acceptable. The
  generator hands the written file to a runner and relays whatever verdict
  comes back without interpreting it.

How:
  ``mihomo -t -d <dir> -f <file>`` and ``sing-box check -c <file>`` are run
  with :func:`subprocess.run`, bounded by a timeout. Binaries come from the
  runtime configuration or, failing that, from ``PATH``. A zero exit status is an
  acceptance; otherwise the combined output becomes the verdict message.

Interfaces:
  :class:`CoreRunner`, :class:`ExternalVerdict`, :class:`SubprocessCoreRunner`.

Invariants & Safety:
  - A missing binary or a timeout is an infrastructure failure and raises
    :class:`~routeforge.errors.CoreRunnerError`, never a rejection verdict.
"""
from __future__ import annotations

import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Union

from ..config.schema import EngineType
from ..errors import CoreRunnerError
from ..utils.logging import JsonLogger, get_logger


@dataclass(frozen=True)
class ExternalVerdict:
    """Verdict reported by the proxy core for one artifact."""

    accepted: bool
    message: str = ""


class CoreRunner(Protocol):
    def available(self, engine: EngineType) -> bool:
        """Report whether artifacts of ``engine`` can be checked."""

    def check(self, engine: EngineType, path: Path) -> ExternalVerdict:
        """Ask the proxy core whether the artifact at ``path`` is acceptable."""


_DEFAULT_BINARIES: Dict[EngineType, str] = {
    EngineType.MIHOMO: "mihomo",
    EngineType.SINGBOX: "sing-box",
}


class SubprocessCoreRunner:
    """Run the installed proxy-core binaries in check mode."""

    def __init__(
        self,
        binaries: Optional[Dict[EngineType, Optional[str]]] = None,
        *,
        timeout_s: float = 30.0,
        logger: Optional[JsonLogger] = None,
    ) -> None:
        configured = {EngineType(engine): binary for engine, binary in (binaries or {}).items() if binary}
        self._binaries: Dict[EngineType, Optional[str]] = {
            engine: configured.get(engine) or shutil.which(default) for engine, default in _DEFAULT_BINARIES.items()
        }
        self._timeout_s = timeout_s
        self._logger = logger or get_logger("routeforge.runner")

    def available(self, engine: Union[EngineType, str]) -> bool:
        return self._binaries[EngineType(engine)] is not None

    def command(self, engine: Union[EngineType, str], path: Path) -> List[str]:
        engine = EngineType(engine)
        path = Path(path)
        binary = self._binaries[engine]
        if binary is None:
            raise CoreRunnerError(f"no {engine.value} binary configured or found on PATH")
        if engine is EngineType.MIHOMO:
            return [binary, "-t", "-d", str(path.parent), "-f", str(path)]
        return [binary, "check", "-c", str(path)]

    def check(self, engine: EngineType, path: Path) -> ExternalVerdict:
        cmd = self.command(engine, path)
        try:
            result = subprocess.run(
                cmd,
                check=False,
                capture_output=True,
                text=True,
                timeout=self._timeout_s,
            )
        except FileNotFoundError as exc:
            raise CoreRunnerError(f"proxy core binary not found: {cmd[0]}") from exc
        except subprocess.TimeoutExpired as exc:
            raise CoreRunnerError(f"{cmd[0]} check timed out after {self._timeout_s}s") from exc
        output = "\n".join(part.strip() for part in (result.stdout, result.stderr) if part and part.strip())
        verdict = ExternalVerdict(accepted=result.returncode == 0, message=output)
        self._logger.info(
            "proxy core check finished",
            engine=EngineType(engine).value,
            accepted=verdict.accepted,
            returncode=result.returncode,
        )
        return verdict


__all__ = ["CoreRunner", "ExternalVerdict", "SubprocessCoreRunner"]
