"""Subprocess and redaction helpers for the cosyctl application."""
import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from ..config import Config
from ..errors import BackendCommandFailure, PrerequisiteMissing

logger = logging.getLogger("cosyctl.utils")


def _is_sensitive(key: str) -> bool:
    return any(redact_key in key.lower() for redact_key in Config.REDACT_KEYS)


def redact_command(cmd: Sequence[str]) -> str:
    """Render a command for logging with secret-bearing values masked.

    ``--from-literal=password=...`` style arguments keep their key and lose
    their value.

    Args:
        cmd: Command and arguments

    Returns:
        A single printable string
    """
    rendered = []
    for arg in cmd:
        if arg.startswith("--from-literal="):
            key = arg[len("--from-literal="):].split("=", 1)[0]
            if _is_sensitive(key):
                arg = f"--from-literal={key}=[REDACTED]"
        rendered.append(arg)
    return " ".join(rendered)


def command_exists(name: str) -> bool:
    """Return True if ``name`` is an executable on PATH."""
    return shutil.which(name) is not None


def require_command(name: str, remediation: Optional[str] = None) -> str:
    """Return the full path of ``name`` or raise PrerequisiteMissing."""
    path = shutil.which(name)
    if path is None:
        raise PrerequisiteMissing(f"{name} is not installed or not in PATH.", remediation)
    return path


def run_command(
    cmd: List[str],
    *,
    check: bool = True,
    capture_output: bool = True,
    cwd: Optional[Path] = None,
    input: Optional[str] = None,
    env: Optional[Dict[str, str]] = None,
    sensitive_output: bool = False,
) -> subprocess.CompletedProcess:
    """Run a command to completion.

    Args:
        cmd: Command and arguments
        check: Raise BackendCommandFailure on a non-zero exit
        capture_output: Capture stdout/stderr instead of inheriting them
        cwd: Working directory
        input: Text fed to stdin
        env: Extra environment variables layered over os.environ
        sensitive_output: stdout carries secrets; keep it out of logs and errors

    Returns:
        The completed process

    Raises:
        PrerequisiteMissing: If the executable does not exist
        BackendCommandFailure: If check is set and the command fails
    """
    cmd_str = redact_command(cmd)
    logger.debug(f"💻 Running: {cmd_str}")
    run_env = None
    if env:
        run_env = dict(os.environ)
        run_env.update(env)
    try:
        result = subprocess.run(
            cmd,
            text=True,
            cwd=cwd,
            input=input,
            env=run_env,
            stdout=subprocess.PIPE if capture_output else None,
            stderr=subprocess.PIPE if capture_output else None,
        )
    except FileNotFoundError as e:
        raise PrerequisiteMissing(f"{cmd[0]} is not installed or not in PATH.") from e

    if capture_output and not sensitive_output:
        logger.debug(f"🟢 Output:\n{result.stdout}")

    if check and result.returncode != 0:
        output = ""
        if capture_output:
            output = (result.stderr or "").strip()
            if not sensitive_output:
                output = (output + "\n" + (result.stdout or "")).strip()
        msg = f"Command failed: {cmd_str} (exit code: {result.returncode})"
        if output:
            msg += f"\n{output}"
        raise BackendCommandFailure(msg, returncode=result.returncode, output=output)
    return result


def stream_command(cmd: List[str], log_path: Path, *, cwd: Optional[Path] = None) -> int:
    """Run a command, echoing its output and copying it to ``log_path``.

    Args:
        cmd: Command and arguments
        log_path: File receiving a copy of the combined output
        cwd: Working directory

    Returns:
        The exit code of the command
    """
    logger.debug(f"💻 Running: {redact_command(cmd)} (log: {log_path})")
    log_path.parent.mkdir(parents=True, exist_ok=True)
    with open(log_path, "w", encoding="utf-8") as log_file:
        try:
            process = subprocess.Popen(
                cmd,
                cwd=cwd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
            )
        except FileNotFoundError as e:
            raise PrerequisiteMissing(f"{cmd[0]} is not installed or not in PATH.") from e
        try:
            for line in process.stdout:
                print(line, end="", flush=True)
                log_file.write(line)
            return process.wait()
        finally:
            process.stdout.close()
            if process.poll() is None:
                logger.warning(f"⚠️  Stopping {cmd[0]} (pid {process.pid})")
                process.terminate()
                try:
                    process.wait(timeout=10)
                except subprocess.TimeoutExpired:
                    process.kill()
                    process.wait()
