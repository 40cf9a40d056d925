"""Error taxonomy for Stackwright.

Every error raised by the compile or deployment pipeline derives from
StackwrightError. Each subclass carries a ``prefix`` so the CLI can tell an
operator whether the diagram is wrong, the external tool failed, or the
external tool is missing altogether.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pathlib import Path

    from stackwright.model.issues import ValidationIssue


class StackwrightError(Exception):
    """Base class for all Stackwright errors.

    Attributes:
        prefix: Short category label shown before the message in the CLI.
    """

    prefix = "error"


class ParseError(StackwrightError):
    """Raised when diagram source text is malformed.

    Attributes:
        line: 1-based line number where the problem was detected.
        reason: Human-readable description of the problem.
    """

    prefix = "diagram error"

    def __init__(self, line: int, reason: str):
        self.line = line
        self.reason = reason
        super().__init__(f"line {line}: {reason}")


class ValidationError(StackwrightError):
    """Raised when a validation stage reports one or more issues.

    Attributes:
        stage: Name of the validation stage ("diagram" or "deployable").
        issues: Every issue the stage collected, in detection order.
    """

    prefix = "validation failed"

    def __init__(self, stage: str, issues: list[ValidationIssue]):
        self.stage = stage
        self.issues = list(issues)
        details = "; ".join(issue.message for issue in self.issues)
        super().__init__(f"{stage} model has {len(self.issues)} issue(s): {details}")


class ManifestError(StackwrightError):
    """Raised when the manifest registry cannot be loaded or queried."""

    prefix = "manifest error"


class UnresolvedComponentError(StackwrightError):
    """Raised when a component kind has no manifest in the registry.

    Attributes:
        component_id: Normalized id of the unresolved component.
        kind: The kind that could not be found.
    """

    prefix = "unresolved component"

    def __init__(self, component_id: str, kind: str):
        self.component_id = component_id
        self.kind = kind
        super().__init__(f"component '{component_id}' has unknown kind '{kind}'")


class UnknownTargetError(StackwrightError):
    """Raised when a target identifier is not registered."""

    prefix = "unknown target"

    def __init__(self, target: str, known: list[str] | None = None):
        self.target = target
        msg = f"no deployer registered for target '{target}'"
        if known:
            msg += f" (known: {', '.join(known)})"
        super().__init__(msg)


class ProcessFailedError(StackwrightError):
    """Raised by the process runner when a command exits with non-zero status.

    Attributes:
        command: The command that was executed.
        stdout: Captured standard output (empty in inherit mode).
        stderr: Captured standard error (empty in inherit mode).
        exit_code: Process exit status.
    """

    prefix = "tool failed"

    def __init__(self, command: str, stdout: str, stderr: str, exit_code: int):
        self.command = command
        self.stdout = stdout
        self.stderr = stderr
        self.exit_code = exit_code
        super().__init__(f"'{command}' exited with code {exit_code}")


class DeploymentError(StackwrightError):
    """Raised when an orchestration tool exits with non-zero status.

    Attributes:
        command: The tool invocation that failed.
        exit_code: Process exit status.
        stderr_tail: Last lines of the tool's standard error.
    """

    prefix = "tool failed"

    def __init__(self, command: str, exit_code: int, stderr_tail: str = ""):
        self.command = command
        self.exit_code = exit_code
        self.stderr_tail = stderr_tail
        msg = f"'{command}' exited with code {exit_code}"
        if stderr_tail:
            msg += f":\n{stderr_tail}"
        super().__init__(msg)


class LaunchError(StackwrightError):
    """Raised when an external tool cannot be started at all.

    Attributes:
        command: The command that could not be spawned.
        reason: Underlying operating system error text.
    """

    prefix = "tool missing"

    def __init__(self, command: str, reason: str):
        self.command = command
        self.reason = reason
        super().__init__(f"could not start '{command}': {reason}")


class TunnelError(StackwrightError):
    """Raised when a port-forwarding subprocess signals failure."""

    prefix = "tunnel error"


class ArtifactNotFoundError(StackwrightError):
    """Raised when a stack artifact is required but was never generated.

    Attributes:
        path: Where the artifact was expected.
    """

    prefix = "no artifact found"

    def __init__(self, path: Path):
        self.path = path
        super().__init__(f"{path} does not exist, run 'compile' first")


class CheckFailedError(StackwrightError):
    """Raised when post-deployment checks report failing services.

    Attributes:
        results: Every check result, passing and failing.
    """

    prefix = "checks failed"

    def __init__(self, results: list[Any]):
        self.results = list(results)
        failed = [r.service_id for r in self.results if not r.passed]
        super().__init__(f"{len(failed)} service(s) failed checks: {', '.join(failed)}")
