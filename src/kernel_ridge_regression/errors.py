class PreconditionError(ValueError):
    """Raised when arguments violate the contract of a fit or predict call."""


class SolverError(RuntimeError):
    """Raised when a factorization or direct solve fails."""


class NotSupportedError(NotImplementedError):
    """Raised for operations that are not defined for a model variant."""


class KRRWarning(UserWarning):
    pass


class BlockCountWarning(KRRWarning):
    """The number of blocks is large relative to the number of observations."""


class BlockImbalanceWarning(KRRWarning):
    """Block sizes differ by more than one observation."""
