import logging
import warnings
from collections.abc import Callable, Sequence
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass

import torch
from gpytorch.kernels import Kernel
from torch import Tensor
from tqdm import tqdm

from kernel_ridge_regression.base import AbstractKRR
from kernel_ridge_regression.errors import (
    BlockImbalanceWarning,
    NotSupportedError,
    PreconditionError,
)
from kernel_ridge_regression.kernels import kernel_matrix, kernels_equal, prepare_kernel
from kernel_ridge_regression.krr import KRR
from kernel_ridge_regression.sampling import SeedLike, cluster_assignments, random_permutation
from kernel_ridge_regression.solvers import ridge_solve_
from kernel_ridge_regression.utils import (
    as_matrix,
    as_vector,
    check_block_count,
    check_observations,
    make_blocks,
    unmerge_values,
)

logger = logging.getLogger(__name__)


def _permuted_blocks(n: int, m: int, rng: SeedLike) -> tuple[Tensor, list[Tensor]]:
    perm = random_permutation(n, rng)
    return perm, list(torch.split(perm, make_blocks(n, m)))


@dataclass(frozen=True, eq=False, repr=False)
class FastKRR(AbstractKRR):
    """Fast Kernel Ridge Regression.

    Divides the data into m blocks, fits a separate Kernel Ridge Regression
    on each block and averages the block predictions.

    Attributes:
        lam: Regularization parameter shared by all blocks
        m: Number of blocks
        perm: Shuffled observation indices, blocks are consecutive slices
        X: Training data of every block, each of shape (n_i, d)
        alpha: Weights of every block, each of shape (n_i,)
        kernel: GPyTorch kernel shared by all blocks
    """

    lam: float
    m: int
    perm: Tensor
    X: tuple[Tensor, ...]
    alpha: tuple[Tensor, ...]
    kernel: Kernel

    _repr_fields = ("lam", "m", "kernel")

    def __post_init__(self) -> None:
        if not self.lam > 0:
            raise PreconditionError(f"lam must be positive, got {self.lam}")
        if not self.m > 0:
            raise PreconditionError(f"m must be positive, got {self.m}")
        if len(self.X) != len(self.alpha) or len(self.X) != self.m:
            raise PreconditionError(
                f"expected {self.m} blocks, got {len(self.X)} data blocks "
                f"and {len(self.alpha)} weight blocks"
            )
        sizes = [X_i.shape[0] for X_i in self.X]
        for X_i, alpha_i in zip(self.X, self.alpha):
            if X_i.shape[0] != alpha_i.shape[0]:
                raise PreconditionError(
                    f"block with {X_i.shape[0]} observations has {alpha_i.shape[0]} weights"
                )
        if max(sizes) - min(sizes) > 1:
            warnings.warn(
                "number of observations per block should not differ by more than one",
                BlockImbalanceWarning,
                stacklevel=3,
            )

    @classmethod
    def from_models(cls, models: Sequence[KRR], perm: Tensor) -> "FastKRR":
        """Assemble a FastKRR from per-block KRR models.

        Raises:
            PreconditionError: If the blocks do not share lam and kernel
        """
        if len(models) == 0:
            raise PreconditionError("at least one block model is required")
        lam, kernel = models[0].lam, models[0].kernel
        for model in models[1:]:
            if model.lam != lam or not kernels_equal(model.kernel, kernel):
                raise PreconditionError("all kernel functions and lambdas must be the same")
        return cls(
            lam,
            len(models),
            perm,
            tuple(model.X for model in models),
            tuple(model.alpha for model in models),
            kernel,
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
        progress: bool = False,
    ) -> "FastKRR":
        """Fit one KRR per block of a random partition into m blocks.

        With m > n some blocks are empty. They still count in the average
        taken by ``predict``, which shrinks predictions by the fraction of
        empty blocks.

        Args:
            X: Training data of shape (n, d)
            y: Training responses of shape (n,)
            lam: Regularization parameter, must be positive
            m: Number of blocks
            kernel: GPyTorch kernel
            rng: Seed or Generator for the permutation
            progress: Show a progress bar over the blocks
        """
        if not lam > 0:
            raise PreconditionError(f"lam must be positive, got {lam}")
        X, y = as_matrix(X), as_vector(y)
        check_observations(X, y)
        n = X.shape[0]
        check_block_count(n, m)

        kernel = prepare_kernel(kernel)
        perm, blocks = _permuted_blocks(n, m, rng)
        logger.debug("Fitting %d blocks on %d observations", m, n)
        models = [
            KRR.fit(X[idx], y[idx], lam, kernel)
            for idx in tqdm(blocks, disable=not progress)
        ]
        return cls.from_models(models, perm)

    @classmethod
    def fit_par(
        cls,
        n: int,
        get_X: Callable[[Tensor], Tensor],
        get_y: Callable[[Tensor], Tensor],
        lam: float,
        m: int,
        kernel: Kernel,
        rng: SeedLike = None,
        executor: Executor | None = None,
        max_workers: int | None = None,
        progress: bool = False,
    ) -> "FastKRR":
        """Fit a FastKRR with the block fits running in parallel.

        Data is only loaded block by block through the accessors, e.g.
        ``get_X = lambda idx: X[idx]`` and ``get_y = lambda idx: y[idx]``.
        Results are collected in block order once every block is done; the
        first failing block fails the whole fit.

        Args:
            n: Total number of observations
            get_X: Returns the data rows for a tensor of observation indices
            get_y: Returns the responses for a tensor of observation indices
            lam: Regularization parameter, must be positive
            m: Number of blocks
            kernel: GPyTorch kernel
            rng: Seed or Generator for the permutation
            executor: Executor whose map runs the block fits, a thread pool
                with max_workers workers is used if None
            max_workers: Size of the default thread pool
            progress: Show a progress bar while collecting the blocks
        """
        if not lam > 0:
            raise PreconditionError(f"lam must be positive, got {lam}")
        check_block_count(n, m)

        kernel = prepare_kernel(kernel)
        perm, blocks = _permuted_blocks(n, m, rng)

        def fit_block(idx: Tensor) -> KRR:
            return KRR.fit(get_X(idx), get_y(idx), lam, kernel)

        logger.debug("Fitting %d blocks in parallel", m)
        if executor is None:
            with ThreadPoolExecutor(max_workers=max_workers) as pool:
                models = list(tqdm(pool.map(fit_block, blocks), total=m, disable=not progress))
        else:
            models = list(tqdm(executor.map(fit_block, blocks), total=m, disable=not progress))
        return cls.from_models(models, perm)

    def fitted(self) -> Tensor:
        raise NotSupportedError(f"fitted is not defined for {type(self).__name__}")

    def predict(self, X) -> Tensor:
        """Average the predictions of all blocks."""
        X = as_matrix(X)
        n_new = X.shape[0]
        dtype = self.alpha[0].dtype
        y = torch.zeros(n_new, dtype=dtype)
        K = torch.empty(n_new, self.X[0].shape[0], dtype=dtype)

        for X_i, alpha_i in zip(self.X, self.alpha):
            # blocks may differ in size by one
            if K.shape[1] != X_i.shape[0]:
                K = torch.empty(n_new, X_i.shape[0], dtype=dtype)
            KRR(self.lam, X_i, alpha_i, self.kernel).predict_and_add(X, y, K)

        return y.div_(self.m)

    @classmethod
    def fit_and_predict(
        cls,
        X,
        y,
        lam: float,
        m: int,
        kernel: Kernel,
        rng: SeedLike = None,
        progress: bool = False,
    ) -> Tensor:
        """Fit one KRR per KMeans cluster and return the in-sample predictions.

        Each cluster of size n_c solves (K_c + n_c * lam * I) alpha_c = y_c.

        Returns:
            Predictions of shape (n,) in the original observation order
        """
        if not lam > 0:
            raise PreconditionError(f"lam must be positive, got {lam}")
        X, y = as_matrix(X), as_vector(y)
        check_observations(X, y)
        n = X.shape[0]
        check_block_count(n, m)

        kernel = prepare_kernel(kernel)
        assignments, counts = cluster_assignments(X, m, rng)
        values = torch.empty(n, dtype=y.dtype)

        start = 0
        for c in tqdm(range(m), disable=not progress):
            members = assignments == c
            n_c = int(counts[c])
            K = kernel_matrix(kernel, X[members])
            alpha = ridge_solve_(K.clone(), y[members], n_c * lam)
            values[start : start + n_c] = K @ alpha
            start += n_c

        return unmerge_values(values, assignments, m)
