"""Shared test utilities and fixtures for kernel ridge regression tests."""

import gpytorch
import numpy as np
import pytest
import torch

from kernel_ridge_regression.utils import to_tensor

N_TRAIN_SAMPLES = 200
N_CLUSTERS = 5
CLUSTER_SIZE = 12


@pytest.fixture
def sine_data() -> tuple[torch.Tensor, torch.Tensor]:
    """Noisy sine on [-pi, pi], one feature."""
    rng = np.random.default_rng(42)
    X = rng.uniform(-np.pi, np.pi, size=(N_TRAIN_SAMPLES, 1))
    y = np.sin(X[:, 0]) + 0.1 * rng.standard_normal(N_TRAIN_SAMPLES)
    return to_tensor(X), to_tensor(y)


@pytest.fixture
def query_points() -> torch.Tensor:
    return torch.linspace(-3.0, 3.0, 50, dtype=torch.float64).unsqueeze(1)


@pytest.fixture
def grid_data() -> tuple[torch.Tensor, torch.Tensor]:
    """30 equispaced points, 0.2 apart, noiseless sine."""
    X = torch.arange(30, dtype=torch.float64).unsqueeze(1) * 0.2 - 3.0
    y = torch.sin(X[:, 0])
    return X, y


@pytest.fixture
def clustered_data() -> tuple[torch.Tensor, torch.Tensor]:
    """Five tight, well separated groups of points in shuffled order."""
    rng = np.random.default_rng(7)
    centers = np.repeat([-4.0, -2.0, 0.0, 2.0, 4.0], CLUSTER_SIZE)
    X = centers + rng.uniform(-0.1, 0.1, size=centers.shape[0])
    X = rng.permutation(X)[:, np.newaxis]
    y = np.sin(X[:, 0])
    return to_tensor(X), to_tensor(y)


@pytest.fixture
def rbf_kernel() -> gpytorch.kernels.RBFKernel:
    kernel = gpytorch.kernels.RBFKernel()
    kernel.lengthscale = 0.5
    return kernel


@pytest.fixture
def narrow_rbf_kernel() -> gpytorch.kernels.RBFKernel:
    """RBF kernel whose Gram matrix on ``grid_data`` is well conditioned."""
    kernel = gpytorch.kernels.RBFKernel()
    kernel.lengthscale = 0.1
    return kernel
