from pathlib import Path
from typing import Optional, Union

class KaedeError(Exception):
    """Base for every failure an override request can surface."""

    def __init__(self, message: str, path: Optional[Union[str, Path]] = None):
        super().__init__(message)
        self.path = Path(path) if path is not None else None

    def __str__(self) -> str:
        msg = super().__str__()
        if self.path is not None and str(self.path) not in msg:
            return f"{msg} ({self.path})"
        return msg

class NotFound(KaedeError):
    """No config file, or no block for the requested app id."""

class ParseFailure(KaedeError):
    """Malformed brace or JSON structure."""

class ValidationFailure(KaedeError):
    """The re-read file does not hold the state we just wrote."""

class IoFailure(KaedeError):
    """Read, write or backup failed at the OS level."""

class RefusedWrite(KaedeError):
    """Writing would clobber a file kaede does not own."""

class ExternalToolFailure(KaedeError):
    """A helper command (flatpak) was missing or exited non-zero."""
