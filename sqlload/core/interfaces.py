from typing import Any, Protocol


class Tokenizer(Protocol):
    """Restartable state machine fed with decoded text, one line at a time."""

    def append(self, text: str) -> None:
        """Add decoded characters to the pending buffer."""
        ...

    def has_next(self, end_of_file: bool = False) -> bool:
        """Report whether a complete unit is buffered. Calling it again without new input is a no-op."""
        ...

    def next_unit(self) -> Any:
        """Return the complete unit found by ``has_next``."""
        ...

    def reset(self) -> None:
        """Return to the initial state, discarding pending text."""
        ...

    def is_empty(self) -> bool:
        """True when no partial unit is pending."""
        ...
