import warnings

import torch
from gpytorch import Module

from kernel_ridge_regression.config import (
    DEFAULT_DTYPE,
    EMPIRICAL_BLOCK_EXPONENT,
    THEORETICAL_BLOCK_EXPONENT,
)
from kernel_ridge_regression.errors import BlockCountWarning, PreconditionError


def freeze_parameters(module: Module) -> None:
    """Disable gradient computation for all module parameters."""
    for param in module.parameters(recurse=True):
        param.requires_grad_(False)


def to_tensor(value, dtype: torch.dtype = DEFAULT_DTYPE) -> torch.Tensor:
    """Convert value to tensor, handling both scalar and tensor inputs safely.

    Args:
        value: Input value (scalar, array, or tensor)
        dtype: Target dtype for the tensor

    Returns:
        Tensor with specified dtype
    """
    if isinstance(value, torch.Tensor):
        return value.detach().clone().to(dtype)
    return torch.tensor(value, dtype=dtype)


def as_matrix(X, dtype: torch.dtype = DEFAULT_DTYPE) -> torch.Tensor:
    """Convert data to an observations x features matrix.

    A one dimensional input is read as n observations of a single feature.
    """
    X = to_tensor(X, dtype=dtype)
    if X.dim() == 1:
        X = X.unsqueeze(1)
    if X.dim() != 2:
        raise PreconditionError(f"expected a 2-d data matrix, got shape {tuple(X.shape)}")
    return X


def as_vector(y, dtype: torch.dtype = DEFAULT_DTYPE) -> torch.Tensor:
    return to_tensor(y, dtype=dtype).reshape(-1)


def check_observations(X: torch.Tensor, y: torch.Tensor) -> None:
    if X.shape[0] != y.shape[0]:
        raise PreconditionError(
            f"X has {X.shape[0]} observations but y has {y.shape[0]} responses"
        )


def make_blocks(n_obs: int, n_blocks: int) -> list[int]:
    """Split n_obs observations into n_blocks near-equal blocks.

    The first ``n_obs % n_blocks`` blocks get one observation more than the
    others.

    Args:
        n_obs: Number of observations
        n_blocks: Number of blocks, must be positive

    Returns:
        List of n_blocks block sizes summing to n_obs
    """
    if n_blocks <= 0:
        raise PreconditionError(f"number of blocks must be positive, got {n_blocks}")
    size, rest = divmod(n_obs, n_blocks)
    return [size + 1 if i < rest else size for i in range(n_blocks)]


def check_block_count(
    n: int,
    m: int,
    theoretical_exponent: float = THEORETICAL_BLOCK_EXPONENT,
    empirical_exponent: float = EMPIRICAL_BLOCK_EXPONENT,
) -> None:
    """Warn when m blocks are too many for n observations."""
    if m > n**theoretical_exponent:
        warnings.warn(
            f"m > n^1/3 = {n ** (1 / 3):.3f}, above theoretical limit",
            BlockCountWarning,
            stacklevel=3,
        )
    if m > n**empirical_exponent:
        warnings.warn(
            f"m > n^{empirical_exponent} = {n ** empirical_exponent:.3f}, above empirical limit",
            BlockCountWarning,
            stacklevel=3,
        )


def _check_labels(assignments: torch.Tensor, n_clusters: int) -> None:
    if assignments.numel() and (assignments.min() < 0 or assignments.max() >= n_clusters):
        raise PreconditionError(f"cluster labels must lie in [0, {n_clusters})")


def merge_values(
    values: torch.Tensor, assignments: torch.Tensor, n_clusters: int
) -> torch.Tensor:
    """Reorder values so that each cluster occupies a contiguous block.

    Blocks are laid out in cluster order, values inside a block keep their
    original relative order. This is the inverse of ``unmerge_values``.
    """
    if values.shape[0] != assignments.shape[0]:
        raise PreconditionError("values and assignments must have the same length")
    _check_labels(assignments, n_clusters)
    return torch.cat([values[assignments == c] for c in range(n_clusters)])


def unmerge_values(
    values: torch.Tensor, assignments: torch.Tensor, n_clusters: int
) -> torch.Tensor:
    """Restore the original observation order of cluster-contiguous values.

    Position i with cluster c receives the next unused value of the block of
    cluster c. Blocks are contiguous in cluster order and sized by the
    per-cluster counts of ``assignments``.

    Args:
        values: Values of shape (n,) laid out cluster by cluster
        assignments: Cluster label in [0, n_clusters) for every observation
        n_clusters: Number of clusters

    Returns:
        Values of shape (n,) in original observation order
    """
    if values.shape[0] != assignments.shape[0]:
        raise PreconditionError("values and assignments must have the same length")
    _check_labels(assignments, n_clusters)
    counts = torch.bincount(assignments, minlength=n_clusters)
    out = torch.empty_like(values)
    start = 0
    for c in range(n_clusters):
        count = int(counts[c])
        out[assignments == c] = values[start : start + count]
        start += count
    return out
