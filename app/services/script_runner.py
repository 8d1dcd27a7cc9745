"""Executes automated recovery-step scripts."""

from __future__ import annotations

import logging
import shlex
import subprocess
from dataclasses import dataclass, field
from typing import Protocol

logger = logging.getLogger(__name__)


@dataclass
class ScriptResult:
    issues: list[str] = field(default_factory=list)
    output: str = ""

    @property
    def ok(self) -> bool:
        return not self.issues


class ScriptRunner(Protocol):
    def run(self, script: str, timeout: float | None = None) -> ScriptResult: ...


class SubprocessScriptRunner:
    """Runs a step script as a local command line (no shell)."""

    def run(self, script: str, timeout: float | None = None) -> ScriptResult:
        try:
            argv = shlex.split(script)
        except ValueError as exc:
            return ScriptResult(issues=[f"Unparseable script {script!r}: {exc}"])
        if not argv:
            return ScriptResult(issues=["Empty script"])

        try:
            proc = subprocess.run(argv, capture_output=True, text=True, timeout=timeout, check=False)
        except subprocess.TimeoutExpired:
            return ScriptResult(issues=[f"Script timed out after {timeout}s"])
        except OSError as exc:
            return ScriptResult(issues=[f"Script could not start: {exc}"])

        if proc.returncode != 0:
            stderr = (proc.stderr or "").strip()[:500]
            return ScriptResult(
                issues=[f"Script exited with {proc.returncode}" + (f": {stderr}" if stderr else "")],
                output=proc.stdout[:2000],
            )
        return ScriptResult(output=proc.stdout[:2000])


def get_script_runner() -> ScriptRunner:
    return SubprocessScriptRunner()
