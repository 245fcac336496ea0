"""
Retry wrapper for external prover commands (snarkjs and friends).

Transient failures are retried with exponential backoff (1s, 2s, 4s by
default). Exhausting the budget raises CommandRetryError with the last
stderr attached.
"""
from __future__ import annotations

import subprocess
import time
from pathlib import Path
from typing import Callable, List, Optional

from services.crypto_core.errors import VeilPayError
from services.logging_config import get_logger

logger = get_logger("command")


class CommandRetryError(VeilPayError):
    """Raised when a command fails after all retries"""


def run_with_retry(
    cmd: List[str],
    max_retries: int = 3,
    timeout: int = 120,
    cwd: Optional[Path] = None,
    env: Optional[dict] = None,
    description: str = "Command",
    backoff_seconds: float = 1.0,
    on_attempt: Optional[Callable[[int, str], None]] = None,
) -> subprocess.CompletedProcess:
    """
    Run a command, retrying on failure.

    Args:
        cmd: Command list (e.g., ["snarkjs", "groth16", "fullprove", ...])
        max_retries: Maximum attempts (default: 3)
        timeout: Per-attempt timeout in seconds
        cwd: Working directory for command
        env: Environment variables
        description: Human-readable description for logging
        backoff_seconds: Base delay, doubled after each failed attempt
        on_attempt: Optional callback called on each attempt: (attempt_num, status_msg)

    Returns:
        CompletedProcess with stdout, stderr, returncode

    Raises:
        CommandRetryError: If command fails after all retries
    """
    last_error = ""
    for attempt in range(max_retries):
        status_msg = f"{description} (attempt {attempt + 1}/{max_retries})..."
        logger.info(status_msg)
        if on_attempt:
            on_attempt(attempt + 1, status_msg)

        try:
            result = subprocess.run(
                cmd,
                cwd=cwd,
                env=env,
                capture_output=True,
                text=True,
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired:
            last_error = f"timed out after {timeout}s"
            logger.warning("%s %s", description, last_error)
        except OSError as e:
            # missing binary is not going to fix itself
            raise CommandRetryError(f"{description} could not start: {e}") from e
        else:
            if result.returncode == 0:
                logger.info("%s successful", description)
                return result
            last_error = f"exit code {result.returncode}: {result.stderr[:500]}"
            logger.warning("%s failed with %s", description, last_error)

        if attempt < max_retries - 1:
            wait_time = backoff_seconds * (2 ** attempt)
            logger.info("Retrying %s in %.1fs", description, wait_time)
            time.sleep(wait_time)

    raise CommandRetryError(f"{description} failed after {max_retries} attempts. Last error: {last_error}")
