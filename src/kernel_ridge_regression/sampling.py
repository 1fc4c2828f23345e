import numpy as np
import torch
from sklearn.cluster import KMeans
from torch import Tensor

from kernel_ridge_regression.errors import PreconditionError

SeedLike = int | np.random.Generator | None


def get_rng(rng: SeedLike = None) -> np.random.Generator:
    """Return a numpy Generator from a seed, an existing Generator or None."""
    return np.random.default_rng(rng)


def random_permutation(n: int, rng: SeedLike = None) -> Tensor:
    """Shuffle the observation indices 0..n-1."""
    return torch.as_tensor(get_rng(rng).permutation(n), dtype=torch.long)


def sample_landmarks(
    n: int,
    m: int,
    rng: SeedLike = None,
    weights: np.ndarray | Tensor | None = None,
) -> Tensor:
    """Draw m distinct landmark indices out of n observations.

    Args:
        n: Number of observations
        m: Number of landmarks
        rng: Seed or Generator
        weights: Optional non-negative sampling weights of shape (n,)

    Returns:
        Long tensor of shape (m,) with unique indices
    """
    if not 0 < m <= n:
        raise PreconditionError(f"cannot sample {m} landmarks out of {n} observations")
    p = None
    if weights is not None:
        w = np.asarray(weights, dtype=np.float64).reshape(-1)
        if w.shape[0] != n:
            raise PreconditionError(f"expected {n} weights, got {w.shape[0]}")
        if np.any(w < 0) or np.count_nonzero(w) < m:
            raise PreconditionError("weights must be non-negative with at least m non-zero entries")
        p = w / w.sum()
    idx = get_rng(rng).choice(n, size=m, replace=False, p=p)
    return torch.as_tensor(idx, dtype=torch.long)


def sample_from_clusters(
    assignments: Tensor, items: list[int], rng: SeedLike = None
) -> Tensor:
    """Draw items[c] distinct indices from every cluster c, cluster by cluster."""
    rng = get_rng(rng)
    chosen = []
    for c, k in enumerate(items):
        members = torch.nonzero(assignments == c).flatten().numpy()
        if members.shape[0] < k:
            raise PreconditionError(
                f"cluster {c} has {members.shape[0]} observations, cannot draw {k} landmarks"
            )
        chosen.append(rng.choice(members, size=k, replace=False))
    return torch.as_tensor(np.concatenate(chosen), dtype=torch.long)


def cluster_assignments(
    X: Tensor, n_clusters: int, rng: SeedLike = None
) -> tuple[Tensor, Tensor]:
    """Partition the rows of X with KMeans.

    Args:
        X: Data of shape (n, d)
        n_clusters: Number of clusters
        rng: Seed or Generator used to seed KMeans

    Returns:
        Tuple of (assignments, counts): cluster label per observation of
        shape (n,) and number of observations per cluster of shape
        (n_clusters,)
    """
    if not 0 < n_clusters <= X.shape[0]:
        raise PreconditionError(
            f"cannot build {n_clusters} clusters out of {X.shape[0]} observations"
        )
    random_state = int(get_rng(rng).integers(np.iinfo(np.int32).max))
    km = KMeans(n_clusters=n_clusters, n_init=10, random_state=random_state)
    labels = km.fit_predict(X.detach().cpu().numpy())
    assignments = torch.as_tensor(labels, dtype=torch.long)
    counts = torch.bincount(assignments, minlength=n_clusters)
    return assignments, counts
