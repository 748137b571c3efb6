class RandomGenError(Exception):
    """Base class for every error raised by randomgen."""


class ValidationError(RandomGenError, ValueError):
    """Caller input is missing, malformed or out of range."""


class ArtifactMissingError(RandomGenError):
    """A required build artifact is absent and cannot be rebuilt in this call."""


class ExternalToolError(RandomGenError):
    """circom, snarkjs, node or wget failed."""

    def __init__(self, message, tool=None, returncode=None, output=""):
        super().__init__(message)
        self.tool = tool
        self.returncode = returncode
        self.output = output


class VerificationMismatchError(RandomGenError):
    """A proof generated by this process did not pass its own verification."""


class FileIOError(RandomGenError, OSError):
    """Reading or writing a persisted proof bundle failed."""


class NotReadyError(RandomGenError):
    """A handle was used before initialize() or after it failed."""
