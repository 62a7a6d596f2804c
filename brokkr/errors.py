"""Error type raised throughout the package."""


class BrokkrError(Exception):
    """A failure reported by flashing, archive or I/O code."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message