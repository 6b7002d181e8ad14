"""
Worker exceptions.

Raised at the seams of the worker package and caught at loop boundaries
(listener thread, worker process loop); never propagated to the capture loop.
"""


class ModelLoadError(Exception):
    """Raised when the worker cannot load the configured model or prompt."""
    pass


class ProtocolViolation(Exception):
    """Raised when a worker message is malformed or arrives in the wrong state."""
    pass


class InvalidTransition(Exception):
    """Raised on a WorkerState transition outside the allowed graph."""
    pass
