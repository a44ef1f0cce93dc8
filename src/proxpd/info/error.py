# Custom exceptions used inside proxpd.


class ProxPDError(Exception):
    """
    Parent class of all errors raised in proxpd.
    """


class DimensionMismatch(ProxPDError, ValueError):
    """
    Vector length disagrees with the operator it is given to.
    """


class InvalidParameter(ProxPDError, ValueError):
    """
    Parameter outside its admissible domain, e.g. zero scale, malformed block geometry, negative step size.
    """


class DeviceUnavailable(ProxPDError, RuntimeError):
    """
    Requested compute backend cannot be acquired.

    Device selection is the caller's responsibility: this error is reported, never retried.
    """


class NotInitialized(ProxPDError, RuntimeError):
    """
    Operator/solver used before its ``initialize()`` method was called.
    """


class SolverBusy(ProxPDError, RuntimeError):
    """
    Solver reconfigured while a run is in flight.
    """
