"""Subversion client exceptions.

Errors raised by an ``svn`` backend carry the stable ``E######`` code the
client printed, so the operation engine can decide on retries without
parsing messages.
"""

from __future__ import annotations

from lodestar.exceptions.base import LodestarError


class SvnError(LodestarError):
    """Exception for failed ``svn`` client invocations.

    Attributes:
        message: Human-readable error message.
        error_code: Structured svn error code (e.g. ``"E155004"``), if known.
        exit_code: Process exit status of the client.
        stderr: Raw stderr from the client.
        command: The svn subcommand that failed (e.g. ``"update"``).
    """

    def __init__(
        self,
        message: str,
        *,
        error_code: str | None = None,
        exit_code: int | None = None,
        stderr: str | None = None,
        command: str | None = None,
    ) -> None:
        self.error_code = error_code
        self.exit_code = exit_code
        self.stderr = stderr
        self.command = command
        super().__init__(message)

    @classmethod
    def from_stderr(
        cls,
        stderr: str,
        *,
        exit_code: int | None = None,
        command: str | None = None,
    ) -> SvnError:
        """Build an error whose code is detected from the client's stderr."""
        from lodestar.svn.error_codes import detect_error_code

        first_line = next(
            (line.strip() for line in stderr.splitlines() if line.strip()),
            "svn command failed",
        )
        return cls(
            first_line,
            error_code=detect_error_code(stderr),
            exit_code=exit_code,
            stderr=stderr,
            command=command,
        )


__all__ = ["SvnError"]
