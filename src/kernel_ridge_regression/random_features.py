import math
from collections.abc import Callable
from dataclasses import dataclass

import torch
from torch import Tensor

from kernel_ridge_regression.base import AbstractKRR
from kernel_ridge_regression.errors import NotSupportedError, PreconditionError
from kernel_ridge_regression.sampling import SeedLike, get_rng
from kernel_ridge_regression.solvers import cholesky_solve
from kernel_ridge_regression.utils import as_matrix, as_vector, check_observations, to_tensor

FeatureMap = Callable[[Tensor, Tensor], Tensor]


def complex_exponential_features(X: Tensor, W: Tensor) -> Tensor:
    """Random Fourier features exp(i X W) of shape (n, K)."""
    return torch.exp(1j * (X @ W))


@dataclass(frozen=True, eq=False, repr=False)
class RandomFourierFeatures(AbstractKRR):
    """Random Fourier Features, see Rahimi and Recht (2008).

    Attributes:
        lam: Regularization parameter, non-negative
        K: Number of random features
        sigma: Bandwidth, the projection weights are scaled by 1 / sigma
        W: Random projection weights of shape (d, K)
        alpha: Feature weights of shape (K,), complex for the default map
        feature_map: Maps (X, W) to features of shape (n, K)
    """

    lam: float
    K: int
    sigma: float
    W: Tensor
    alpha: Tensor
    feature_map: FeatureMap

    _repr_fields = ("lam", "sigma", "K", "feature_map")

    def __post_init__(self) -> None:
        if not self.lam >= 0:
            raise PreconditionError(f"lam must be non-negative, got {self.lam}")
        if not self.K > 0:
            raise PreconditionError(f"K must be positive, got {self.K}")
        if self.W.shape[1] != self.K:
            raise PreconditionError(f"W has {self.W.shape[1]} columns, expected {self.K}")
        if not self.sigma > 0:
            raise PreconditionError(f"sigma must be positive, got {self.sigma}")

    @classmethod
    def fit(
        cls,
        X,
        y,
        lam: float,
        K: int,
        sigma: float,
        feature_map: FeatureMap = complex_exponential_features,
        rng: SeedLike = None,
    ) -> "RandomFourierFeatures":
        """Fit ridge regression on K random features.

        Solves (Z^H Z + lam * K * I) alpha = Z^H y with Z = feature_map(X, W) / sqrt(K).
        """
        if not lam >= 0:
            raise PreconditionError(f"lam must be non-negative, got {lam}")
        if not K > 0:
            raise PreconditionError(f"K must be positive, got {K}")
        if not sigma > 0:
            raise PreconditionError(f"sigma must be positive, got {sigma}")
        X, y = as_matrix(X), as_vector(y)
        check_observations(X, y)
        d = X.shape[1]

        W = to_tensor(get_rng(rng).standard_normal((d, K))) / sigma
        Z = feature_map(X, W) / math.sqrt(K)
        Z2 = Z.mH @ Z
        Z2.diagonal().add_(lam * K)
        alpha = cholesky_solve(Z2, Z.mH @ y.to(Z.dtype))
        return cls(lam, K, sigma, W, alpha, feature_map)

    def predict(self, X) -> Tensor:
        Z = self.feature_map(as_matrix(X), self.W) / math.sqrt(self.K)
        return torch.real(Z @ self.alpha)

    def fitted(self) -> Tensor:
        raise NotSupportedError(f"fitted is not defined for {type(self).__name__}")
