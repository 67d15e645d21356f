"""Exception taxonomy for tariff compilation, model formulation and solving.

None of these are retried. A failure raised while simulating one horizon segment
aborts the whole simulation.
"""


class DersimError(Exception):
    """Base class for engine errors."""

    pass


class ConfigurationError(DersimError):
    """Raised when configuration is inconsistent or requests an unsupported feature."""

    pass


class InfeasibleOrUnsolvedError(DersimError):
    """Raised when the solver returns neither an optimal nor a usable time-limited solution."""

    pass


class TimeLimitNoSolutionError(DersimError):
    """Raised when the solver hits its time limit without finding any candidate solution."""

    pass
