"""Shared exception types for the planner."""


class PlannerError(Exception):
    """Base class for every error raised by the planner itself."""


class DecodeError(PlannerError):
    """Raised when a container header cannot be decoded."""


class MalformedContainer(DecodeError):
    """Raised when the container is structurally corrupt.

    Carries *expected* and *actual* (e.g. the magic constant) so the message
    can tell an incompatible file apart from a damaged one.
    """

    def __init__(self, expected: object, actual: object, details: str | None = None) -> None:
        self.expected = expected
        self.actual = actual
        self.details = details
        message = f"Malformed container: expected {expected!r}, got {actual!r}"
        if details:
            message = f"{message} ({details})"
        super().__init__(message)


class UnsupportedVersion(DecodeError):
    """Raised when the container format version is older than we can read."""

    def __init__(self, version: int, minimum: int) -> None:
        self.version = version
        self.minimum = minimum
        super().__init__(
            f"Unsupported container version {version} (minimum supported: {minimum}); "
            f"the file is outdated, please download a newer conversion"
        )


class TruncatedInput(DecodeError):
    """Raised when a read would advance past the end of the supplied bytes.

    Recoverable only by reading a longer prefix of the same source.
    """

    def __init__(self, offset: int, needed: int, available: int) -> None:
        self.offset = offset
        self.needed = needed
        self.available = available
        super().__init__(
            f"Truncated input: need {needed} bytes at offset {offset}, "
            f"but only {max(available - offset, 0)} available"
        )


class MissingRequiredFields(PlannerError):
    """Raised when metadata lacks fields needed for memory estimation."""

    def __init__(self, fields: list[str]) -> None:
        self.fields = fields
        super().__init__(f"Missing required metadata fields: {', '.join(fields)}")


class InvalidSource(PlannerError):
    """Raised before any I/O when a source identifier is empty or unusable."""

    def __init__(self, source: object) -> None:
        self.source = source
        super().__init__(f"Invalid model source: {source!r}")
