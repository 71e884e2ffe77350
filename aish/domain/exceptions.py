"""Exception hierarchy for the aish daemon."""


class AishError(Exception):
    """Base class for all aish errors"""


class QueryInProgressError(AishError):
    """Raised when a query arrives while another one is in flight"""

    def __init__(self, message: str = "Another query is in progress. Please wait."):
        super().__init__(message)


class BackendError(AishError):
    """Transient failure or non-success result from the generative backend"""


class QueryTimeoutError(BackendError):
    """The backend stream went idle for longer than the configured timeout"""


class ProtocolError(AishError):
    """Inbound frame could not be parsed or failed validation"""


class DaemonAlreadyRunningError(AishError):
    """Another daemon instance holds the PID file"""

    def __init__(self, pid: int):
        self.pid = pid
        super().__init__(f"Daemon already running (PID: {pid})")
