"""
Errors raised by the telemetry-to-control cycle.

Every error aborts the current cycle only; the next telemetry message starts
a fresh one.
"""


class ControlCycleError(Exception):
    """Base class for failures that abort a single control cycle."""


class DecodeError(ControlCycleError):
    """Inbound frame or telemetry payload is malformed or incomplete."""


class FitError(ControlCycleError):
    """Reference points cannot support the requested polynomial degree."""


class OptimizerFailure(ControlCycleError):
    """Optimizer did not converge or raised internally."""


class EncodeError(ControlCycleError):
    """Optimizer output violates the (steering, throttle, x/y pairs) layout."""
