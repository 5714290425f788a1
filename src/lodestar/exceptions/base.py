from __future__ import annotations


class LodestarError(Exception):
    """Base exception class for all Lodestar-specific errors.

    All custom exceptions raised by the engine inherit from this class, so an
    outer UI layer can catch everything Lodestar raises in one place while
    system exceptions propagate naturally.

    Attributes:
        message: Human-readable error message describing what went wrong.

    Example:
        ```python
        try:
            await repository.commit_files("fix", ["a.txt"])
        except LodestarError as e:
            show_error(e.message)
        ```
    """

    def __init__(self, message: str) -> None:
        """Initialize the LodestarError.

        Args:
            message: Human-readable error message.
        """
        self.message = message
        super().__init__(message)
