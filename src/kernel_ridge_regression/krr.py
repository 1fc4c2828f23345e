import logging
from dataclasses import dataclass

import torch
from gpytorch.kernels import Kernel
from torch import Tensor

from kernel_ridge_regression.base import AbstractKRR
from kernel_ridge_regression.config import TRUNCATED_NEWTON_EPS, TRUNCATED_NEWTON_MAX_ITER
from kernel_ridge_regression.errors import PreconditionError
from kernel_ridge_regression.kernels import kernel_matrix, prepare_kernel
from kernel_ridge_regression.solvers import cholesky_solve, truncated_newton_
from kernel_ridge_regression.utils import as_matrix, as_vector, check_observations

logger = logging.getLogger(__name__)


def _regularized_gram(X: Tensor, lam: float, kernel: Kernel) -> Tensor:
    """Gram matrix of X with n * lam added to its diagonal.

    Scaling by n keeps lam comparable between the full problem and the
    FastKRR blocks.
    """
    n = X.shape[0]
    K = kernel_matrix(kernel, X)
    K.diagonal().add_(n * lam)
    return K


@dataclass(frozen=True, eq=False, repr=False)
class KRR(AbstractKRR):
    """Basic Kernel Ridge Regression.

    Attributes:
        lam: Regularization parameter, must be positive
        X: Training data of shape (n, d)
        alpha: Weights in kernel space of shape (n,)
        kernel: GPyTorch kernel
    """

    lam: float
    X: Tensor
    alpha: Tensor
    kernel: Kernel

    def __post_init__(self) -> None:
        if not self.lam > 0:
            raise PreconditionError(f"lam must be positive, got {self.lam}")
        if self.X.shape[0] != self.alpha.shape[0]:
            raise PreconditionError(
                f"{self.X.shape[0]} observations but {self.alpha.shape[0]} weights"
            )

    @classmethod
    def fit(cls, X, y, lam: float, kernel: Kernel) -> "KRR":
        """Fit by solving (K + n * lam * I) alpha = y with a Cholesky factorization.

        Args:
            X: Training data of shape (n, d)
            y: Training responses of shape (n,)
            lam: Regularization parameter, must be positive
            kernel: GPyTorch kernel

        Raises:
            PreconditionError: If lam <= 0 or X and y do not match
            SolverError: If the regularized Gram matrix is not positive definite
        """
        if not lam > 0:
            raise PreconditionError(f"lam must be positive, got {lam}")
        X, y = as_matrix(X), as_vector(y)
        check_observations(X, y)
        kernel = prepare_kernel(kernel)

        K = _regularized_gram(X, lam, kernel)
        alpha = cholesky_solve(K, y)
        return cls(lam, X, alpha, kernel)

    def predict_into(self, X, out: Tensor, K: Tensor | None = None) -> Tensor:
        """Predict for X writing into out, optionally reusing the Gram buffer K.

        Args:
            X: New data of shape (n_new, d)
            out: Output buffer of shape (n_new,)
            K: Optional scratch buffer of shape (n_new, n)

        Returns:
            out
        """
        X = as_matrix(X)
        self._check_buffers(X, out, K)
        K = kernel_matrix(self.kernel, X, self.X, out=K)
        return torch.mv(K, self.alpha, out=out)

    def predict_and_add(self, X, out: Tensor, K: Tensor) -> Tensor:
        """Add the predictions for X to out, reusing the Gram buffer K."""
        X = as_matrix(X)
        self._check_buffers(X, out, K)
        kernel_matrix(self.kernel, X, self.X, out=K)
        return out.addmv_(K, self.alpha)

    def _check_buffers(self, X: Tensor, out: Tensor, K: Tensor | None) -> None:
        n_new, n = X.shape[0], self.X.shape[0]
        if out.shape != (n_new,):
            raise PreconditionError(f"output buffer must have shape ({n_new},)")
        if K is not None and K.shape != (n_new, n):
            raise PreconditionError(f"Gram buffer must have shape ({n_new}, {n})")

    def predict(self, X) -> Tensor:
        X = as_matrix(X)
        return self.predict_into(X, torch.empty(X.shape[0], dtype=self.alpha.dtype))


@dataclass(frozen=True, eq=False, repr=False)
class TruncatedNewtonKRR(AbstractKRR):
    """Kernel Ridge Regression approximated by an early stopped iterative solve.

    Attributes:
        lam: Regularization parameter, must be positive
        X: Training data of shape (n, d)
        alpha: Weights in kernel space of shape (n,)
        kernel: GPyTorch kernel
        eps: Stopping threshold on the squared residual norm
        max_iter: Maximum number of conjugate gradient iterations
    """

    lam: float
    X: Tensor
    alpha: Tensor
    kernel: Kernel
    eps: float
    max_iter: int

    _repr_fields = ("lam", "eps", "max_iter", "kernel")

    def __post_init__(self) -> None:
        if self.X.shape[0] != self.alpha.shape[0]:
            raise PreconditionError(
                f"{self.X.shape[0]} observations but {self.alpha.shape[0]} weights"
            )
        if not self.lam > 0:
            raise PreconditionError(f"lam must be positive, got {self.lam}")
        if not self.eps > 0:
            raise PreconditionError(f"eps must be positive, got {self.eps}")
        if not self.max_iter > 0:
            raise PreconditionError(f"max_iter must be positive, got {self.max_iter}")

    @classmethod
    def fit(
        cls,
        X,
        y,
        lam: float,
        kernel: Kernel,
        eps: float = TRUNCATED_NEWTON_EPS,
        max_iter: int = TRUNCATED_NEWTON_MAX_ITER,
    ) -> "TruncatedNewtonKRR":
        """Fit by running at most max_iter conjugate gradient steps on (K + n * lam * I) alpha = y.

        Each step costs one matrix-vector product, so this pays off when
        max_iter is much smaller than n.
        """
        if not lam > 0:
            raise PreconditionError(f"lam must be positive, got {lam}")
        if not eps > 0:
            raise PreconditionError(f"eps must be positive, got {eps}")
        if not max_iter > 0:
            raise PreconditionError(f"max_iter must be positive, got {max_iter}")
        X, y = as_matrix(X), as_vector(y)
        check_observations(X, y)
        kernel = prepare_kernel(kernel)

        K = _regularized_gram(X, lam, kernel)
        logger.debug("Running up to %d conjugate gradient iterations", max_iter)
        alpha = truncated_newton_(K, y, torch.zeros_like(y), eps, max_iter)
        return cls(lam, X, alpha, kernel, eps, max_iter)

    def predict(self, X) -> Tensor:
        K = kernel_matrix(self.kernel, as_matrix(X), self.X)
        return K @ self.alpha
