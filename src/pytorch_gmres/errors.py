"""
Exceptions and warnings raised by pytorch_gmres.
"""


class NonFiniteResidualError(RuntimeError):
    """
    The residual norm became NaN or infinite.

    Restarting from the current iterate cannot recover from this, so the solve
    is aborted. ``iterations`` is the number of Arnoldi steps taken before the
    blow-up was detected.
    """

    def __init__(self, iterations: int):
        self.iterations = iterations
        super().__init__(f"norm of residual is not finite after {iterations} iterations.")


class NonConvergenceWarning(RuntimeWarning):
    """The solver exhausted its restart budget without meeting the tolerance."""
