import logging
import math
from dataclasses import dataclass

import numpy as np
import torch
from gpytorch.kernels import Kernel
from torch import Tensor

from kernel_ridge_regression.base import AbstractKRR
from kernel_ridge_regression.config import (
    DEFAULT_NYSTROM_CLUSTERS,
    NYSTROM_EIGENVALUE_THRESHOLD,
)
from kernel_ridge_regression.errors import NotSupportedError, PreconditionError
from kernel_ridge_regression.kernels import kernel_matrix, prepare_kernel
from kernel_ridge_regression.sampling import (
    SeedLike,
    cluster_assignments,
    get_rng,
    sample_from_clusters,
    sample_landmarks,
)
from kernel_ridge_regression.solvers import direct_solve
from kernel_ridge_regression.utils import (
    as_matrix,
    as_vector,
    check_observations,
    make_blocks,
    unmerge_values,
)

logger = logging.getLogger(__name__)


def _check_landmarks(m: int, n: int) -> None:
    if not 0 < m < n:
        raise PreconditionError(f"need 0 < m < n, got m={m}, n={n}")


@dataclass(frozen=True, eq=False, repr=False)
class SubsetRegressorsKRR(AbstractKRR):
    """Subset of Regressors, (almost) equivalent to the Nyström approximation.

    Attributes:
        lam: Regularization parameter, non-negative
        Xm: Landmark data of shape (m, d)
        m: Number of landmarks
        kernel: GPyTorch kernel
        alpha: Landmark weights of shape (m,)
    """

    lam: float
    Xm: Tensor
    m: int
    kernel: Kernel
    alpha: Tensor

    _repr_fields = ("lam", "kernel", "m")

    def __post_init__(self) -> None:
        if self.m != self.Xm.shape[0]:
            raise PreconditionError(f"m = {self.m} but Xm has {self.Xm.shape[0]} rows")
        if not self.lam >= 0:
            raise PreconditionError(f"lam must be non-negative, got {self.lam}")
        if self.alpha.shape[0] != self.m:
            raise PreconditionError(f"expected {self.m} weights, got {self.alpha.shape[0]}")

    @classmethod
    def fit(
        cls,
        X,
        y,
        lam: float,
        m: int,
        kernel: Kernel,
        weights: np.ndarray | Tensor | None = None,
        rng: SeedLike = None,
    ) -> "SubsetRegressorsKRR":
        """Fit on m sampled landmarks by solving (Kmn Kmn^T + lam * Kmm) alpha = Kmn y.

        Args:
            X: Training data of shape (n, d)
            y: Training responses of shape (n,)
            lam: Regularization parameter, non-negative
            m: Number of landmarks, 0 < m < n
            kernel: GPyTorch kernel
            weights: Optional landmark sampling weights of shape (n,)
            rng: Seed or Generator for the landmark sampling

        Raises:
            SolverError: If the reduced system is singular
        """
        if not lam >= 0:
            raise PreconditionError(f"lam must be non-negative, got {lam}")
        X, y = as_matrix(X), as_vector(y)
        check_observations(X, y)
        n = X.shape[0]
        _check_landmarks(m, n)
        kernel = prepare_kernel(kernel)

        m_idx = sample_landmarks(n, m, rng, weights=weights)
        Xm = X[m_idx]
        Kmn = kernel_matrix(kernel, Xm, X)
        Kmm = Kmn[:, m_idx]

        # the system matrix need not have full rank
        alpha = direct_solve(Kmn @ Kmn.T + lam * Kmm, Kmn @ y)
        return cls(lam, Xm, m, kernel, alpha)

    def predict(self, X) -> Tensor:
        Knm = kernel_matrix(self.kernel, as_matrix(X), self.Xm)
        return Knm @ self.alpha

    def fitted(self) -> Tensor:
        raise NotSupportedError(f"fitted is not defined for {type(self).__name__}")


def nystrom_weights(
    Kmn: Tensor,
    Kmm: Tensor,
    y: Tensor,
    lam: float,
    threshold: float = NYSTROM_EIGENVALUE_THRESHOLD,
) -> Tensor:
    """Weights of the Nyström approximated Kernel Ridge Regression.

    Uses K ≈ Kapprox = Knm Kmm^{-1} Kmn = U Λ U^T with
    U = sqrt(m/n) Knm Um Λm^{-1} and Λ = (n/m) Λm, where Kmm = Um Λm Um^T
    restricted to eigenvalues above threshold. The weights
    (Kapprox + lam * I)^{-1} y follow from Williams & Seeger (2001),
    formula 11, without an n x n solve.

    Args:
        Kmn: Gram matrix between landmarks and training data, shape (m, n)
        Kmm: Gram matrix of the landmarks, shape (m, m)
        y: Training responses of shape (n,)
        lam: Regularization parameter, must be positive
        threshold: Eigenvalues of Kmm at or below this are dropped

    Returns:
        Weights of shape (n,)
    """
    m, n = Kmn.shape
    eigenvalues, eigenvectors = torch.linalg.eigh(Kmm)
    keep = eigenvalues > threshold
    lam_m = eigenvalues[keep]
    U_m = eigenvectors[:, keep]
    logger.debug("Keeping %d of %d landmark eigenvalues", lam_m.shape[0], m)

    U = math.sqrt(m / n) * (Kmn.T @ U_m) / lam_m
    Lam = (n / m) * lam_m

    A = Lam.unsqueeze(1) * (U.T @ U)
    A.diagonal().add_(lam)
    return (y - U @ direct_solve(A, Lam * (U.T @ y))) / lam


@dataclass(frozen=True, eq=False, repr=False)
class NystromKRR(AbstractKRR):
    """Nyström approximation of a Kernel Ridge Regression.

    Attributes:
        lam: Regularization parameter, non-negative
        X: Training data of shape (n, d)
        m: Number of landmarks
        kernel: GPyTorch kernel
        alpha: Weights of shape (n,)
    """

    lam: float
    X: Tensor
    m: int
    kernel: Kernel
    alpha: Tensor

    _repr_fields = ("lam", "kernel", "m")

    def __post_init__(self) -> None:
        if not self.m > 0:
            raise PreconditionError(f"m must be positive, got {self.m}")
        if not self.lam >= 0:
            raise PreconditionError(f"lam must be non-negative, got {self.lam}")
        if self.alpha.shape[0] != self.X.shape[0]:
            raise PreconditionError(
                f"{self.X.shape[0]} observations but {self.alpha.shape[0]} weights"
            )

    @classmethod
    def fit(
        cls,
        X,
        y,
        lam: float,
        m: int,
        kernel: Kernel,
        rng: SeedLike = None,
        threshold: float = NYSTROM_EIGENVALUE_THRESHOLD,
    ) -> "NystromKRR":
        """Fit with a Nyström approximation built from m uniformly sampled landmarks.

        Args:
            X: Training data of shape (n, d)
            y: Training responses of shape (n,)
            lam: Regularization parameter, must be positive
            m: Number of landmarks, 0 < m < n
            kernel: GPyTorch kernel
            rng: Seed or Generator for the landmark sampling
            threshold: Eigenvalue cutoff for the landmark Gram matrix
        """
        if not lam > 0:
            raise PreconditionError(f"lam must be positive, got {lam}")
        X, y = as_matrix(X), as_vector(y)
        check_observations(X, y)
        n = X.shape[0]
        _check_landmarks(m, n)
        kernel = prepare_kernel(kernel)

        m_idx = sample_landmarks(n, m, rng)
        Kmn = kernel_matrix(kernel, X[m_idx], X)
        alpha = nystrom_weights(Kmn, Kmn[:, m_idx], y, lam, threshold)
        return cls(lam, X, m, kernel, alpha)

    def predict(self, X) -> Tensor:
        Knm = kernel_matrix(self.kernel, as_matrix(X), self.X)
        return Knm @ self.alpha

    @classmethod
    def fit_and_predict(
        cls,
        X,
        y,
        lam: float,
        m: int,
        kernel: Kernel,
        n_clusters: int = DEFAULT_NYSTROM_CLUSTERS,
        rng: SeedLike = None,
        threshold: float = NYSTROM_EIGENVALUE_THRESHOLD,
    ) -> Tensor:
        """Nyström fit with landmarks spread over KMeans clusters, predicting in sample.

        The m landmarks are split over n_clusters clusters as evenly as
        possible and drawn within each cluster. Predictions are computed
        cluster by cluster and returned in the original observation order.

        Returns:
            Predictions of shape (n,)
        """
        if not lam > 0:
            raise PreconditionError(f"lam must be positive, got {lam}")
        X, y = as_matrix(X), as_vector(y)
        check_observations(X, y)
        n = X.shape[0]
        _check_landmarks(m, n)
        kernel = prepare_kernel(kernel)
        rng = get_rng(rng)

        assignments, counts = cluster_assignments(X, n_clusters, rng)
        m_idx = sample_from_clusters(assignments, make_blocks(m, n_clusters), rng)
        Kmn = kernel_matrix(kernel, X[m_idx], X)
        alpha = nystrom_weights(Kmn, Kmn[:, m_idx], y, lam, threshold)

        values = torch.empty(n, dtype=alpha.dtype)
        Knm = None
        start = 0
        for c in range(n_clusters):
            size = int(counts[c])
            if Knm is None or Knm.shape[0] != size:
                Knm = torch.empty(size, n, dtype=alpha.dtype)
            kernel_matrix(kernel, X[assignments == c], X, out=Knm)
            values[start : start + size] = Knm @ alpha
            start += size

        return unmerge_values(values, assignments, n_clusters)


# An implementation error which nonetheless works
@dataclass(frozen=True, eq=False, repr=False)
class SomethingKRR(AbstractKRR):
    """Rank r landmark SVD variant.

    Attributes:
        lam: Regularization parameter, non-negative
        X: Training data of shape (n, d)
        r: Rank, 0 < r <= m
        m: Number of landmarks, m <= n
        kernel: GPyTorch kernel
        alpha: Weights of shape (r,)
        sigma_inv: Inverse of the r largest singular values
        Vt: Corresponding right singular vectors, shape (r, m)
    """

    lam: float
    X: Tensor
    r: int
    m: int
    kernel: Kernel
    alpha: Tensor
    sigma_inv: Tensor
    Vt: Tensor

    _repr_fields = ("lam", "kernel", "r", "m")

    def __post_init__(self) -> None:
        n = self.X.shape[0]
        if not 0 < self.r <= self.m <= n:
            raise PreconditionError(f"need 0 < r <= m <= n, got r={self.r}, m={self.m}, n={n}")
        if not self.lam >= 0:
            raise PreconditionError(f"lam must be non-negative, got {self.lam}")
        if self.alpha.shape[0] != self.r or self.sigma_inv.shape[0] != self.r:
            raise PreconditionError(f"alpha and sigma_inv must have length r = {self.r}")
        if tuple(self.Vt.shape) != (self.r, self.m):
            raise PreconditionError(f"Vt must have shape ({self.r}, {self.m})")

    @classmethod
    def fit(
        cls,
        X,
        y,
        lam: float,
        m: int,
        r: int,
        kernel: Kernel,
        rng: SeedLike = None,
    ) -> "SomethingKRR":
        """Fit alpha = diag(lam * r + sigma_inv) Vt Kb y from a rank r SVD of the landmark Gram matrix."""
        if not lam >= 0:
            raise PreconditionError(f"lam must be non-negative, got {lam}")
        X, y = as_matrix(X), as_vector(y)
        check_observations(X, y)
        n = X.shape[0]
        if not 0 < r <= m <= n:
            raise PreconditionError(f"need 0 < r <= m <= n, got r={r}, m={m}, n={n}")
        kernel = prepare_kernel(kernel)

        s_idx = sample_landmarks(n, m, rng)
        Kb = kernel_matrix(kernel, X[s_idx], X)
        K = Kb[:, s_idx]

        # singular values come sorted in descending order
        _, S, Vh = torch.linalg.svd(K)
        sigma_inv = 1 / S[:r]
        Vt = Vh[:r]

        alpha = (lam * r + sigma_inv) * (Vt @ (Kb @ y))
        return cls(lam, X, r, m, kernel, alpha, sigma_inv, Vt)

    def predict(self, X) -> Tensor:
        """Evaluate (alpha . sigma_inv) Vt Kb_new with Kb_new = K(training data, X).

        Vt has m columns while Kb_new has n rows, so this is only defined
        for m == n, and the result has shape (r, n_new).
        """
        n = self.X.shape[0]
        if self.m != n:
            raise PreconditionError(
                f"prediction is only defined when m equals n, got m={self.m}, n={n}"
            )
        Kb_new = kernel_matrix(self.kernel, self.X, as_matrix(X))
        return torch.dot(self.alpha, self.sigma_inv) * (self.Vt @ Kb_new)

    def fitted(self) -> Tensor:
        n = self.X.shape[0]
        if self.m != n:
            raise NotSupportedError(
                f"fitted is not defined for {type(self).__name__} with m={self.m} < n={n}"
            )
        return self.predict(self.X)
