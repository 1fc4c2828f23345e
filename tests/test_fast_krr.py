"""Tests for the divide and conquer FastKRR."""

import warnings
from concurrent.futures import ThreadPoolExecutor

import gpytorch
import pytest
import torch

from kernel_ridge_regression.errors import (
    BlockCountWarning,
    BlockImbalanceWarning,
    NotSupportedError,
    PreconditionError,
)
from kernel_ridge_regression.fast_krr import FastKRR
from kernel_ridge_regression.krr import KRR
from kernel_ridge_regression.sampling import cluster_assignments
from kernel_ridge_regression.utils import make_blocks

from .conftest import N_CLUSTERS, N_TRAIN_SAMPLES

LAMBDA = 1e-3


def test_single_block_matches_exact_krr(sine_data, rbf_kernel, query_points):
    X, y = sine_data
    fast = FastKRR.fit(X, y, LAMBDA, 1, rbf_kernel, rng=0)
    exact = KRR.fit(X, y, LAMBDA, rbf_kernel)

    assert torch.allclose(fast.predict(query_points), exact.predict(query_points), atol=1e-8)


@pytest.mark.parametrize("m", [2, 3, 5])
def test_blocks_follow_permutation(sine_data, rbf_kernel, m):
    X, y = sine_data
    model = FastKRR.fit(X, y, LAMBDA, m, rbf_kernel, rng=1)

    assert model.m == m
    assert [X_i.shape[0] for X_i in model.X] == make_blocks(N_TRAIN_SAMPLES, m)
    assert torch.equal(torch.sort(model.perm).values, torch.arange(N_TRAIN_SAMPLES))
    assert torch.equal(torch.cat(model.X), X[model.perm])


def test_predict_averages_blocks(sine_data, rbf_kernel, query_points):
    X, y = sine_data
    model = FastKRR.fit(X, y, LAMBDA, 3, rbf_kernel, rng=2)
    block_predictions = [
        KRR(model.lam, X_i, alpha_i, model.kernel).predict(query_points)
        for X_i, alpha_i in zip(model.X, model.alpha)
    ]

    expected = torch.stack(block_predictions).mean(dim=0)
    assert torch.allclose(model.predict(query_points), expected)


def test_predictions_close_to_target(sine_data, rbf_kernel, query_points):
    X, y = sine_data
    pred = FastKRR.fit(X, y, LAMBDA, 4, rbf_kernel, rng=3).predict(query_points)
    mse = torch.mean((pred - torch.sin(query_points[:, 0])) ** 2)
    assert mse < 0.02


def test_same_seed_same_model(sine_data, rbf_kernel):
    X, y = sine_data
    a = FastKRR.fit(X, y, LAMBDA, 3, rbf_kernel, rng=4)
    b = FastKRR.fit(X, y, LAMBDA, 3, rbf_kernel, rng=4)
    assert torch.equal(a.perm, b.perm)
    assert all(torch.equal(a_i, b_i) for a_i, b_i in zip(a.alpha, b.alpha))


def test_too_many_blocks_warns(sine_data, rbf_kernel):
    X, y = sine_data
    with pytest.warns(BlockCountWarning):
        FastKRR.fit(X, y, LAMBDA, 12, rbf_kernel, rng=0)


@pytest.mark.parametrize("lam,m", [(0.0, 2), (-1.0, 2), (LAMBDA, 0)])
def test_preconditions(sine_data, rbf_kernel, lam, m):
    X, y = sine_data
    with pytest.raises(PreconditionError):
        FastKRR.fit(X, y, lam, m, rbf_kernel)


def test_fitted_not_supported(sine_data, rbf_kernel):
    X, y = sine_data
    model = FastKRR.fit(X, y, LAMBDA, 2, rbf_kernel, rng=0)
    with pytest.raises(NotSupportedError):
        model.fitted()


def test_imbalanced_blocks_warn(rbf_kernel):
    X = torch.randn(10, 1, dtype=torch.float64)
    alpha = torch.zeros(10, dtype=torch.float64)
    with pytest.warns(BlockImbalanceWarning):
        FastKRR(LAMBDA, 2, torch.arange(10), (X[:2], X[2:]), (alpha[:2], alpha[2:]), rbf_kernel)


def test_empty_blocks_count_in_average(rbf_kernel, query_points):
    X = torch.linspace(-1.0, 1.0, 4, dtype=torch.float64).unsqueeze(1)
    y = torch.sin(X[:, 0])
    with pytest.warns(BlockCountWarning):
        model = FastKRR.fit(X, y, LAMBDA, 6, rbf_kernel, rng=0)

    assert sum(X_i.shape[0] == 0 for X_i in model.X) == 2
    total = sum(
        KRR(model.lam, X_i, alpha_i, model.kernel).predict(query_points)
        for X_i, alpha_i in zip(model.X, model.alpha)
        if X_i.shape[0] > 0
    )
    assert torch.allclose(model.predict(query_points), total / 6)

def test_inconsistent_block_count(rbf_kernel):
    X = torch.randn(10, 1, dtype=torch.float64)
    alpha = torch.zeros(10, dtype=torch.float64)
    with pytest.raises(PreconditionError):
        FastKRR(LAMBDA, 3, torch.arange(10), (X[:5], X[5:]), (alpha[:5], alpha[5:]), rbf_kernel)


class TestFromModels:
    def test_rejects_different_lambdas(self, sine_data, rbf_kernel):
        X, y = sine_data
        models = [KRR.fit(X[:100], y[:100], 1e-3, rbf_kernel), KRR.fit(X[100:], y[100:], 1e-2, rbf_kernel)]
        with pytest.raises(PreconditionError):
            FastKRR.from_models(models, torch.arange(N_TRAIN_SAMPLES))

    def test_rejects_different_kernels(self, sine_data, rbf_kernel):
        X, y = sine_data
        other = gpytorch.kernels.RBFKernel()
        other.lengthscale = 2.0
        models = [KRR.fit(X[:100], y[:100], 1e-3, rbf_kernel), KRR.fit(X[100:], y[100:], 1e-3, other)]
        with pytest.raises(PreconditionError):
            FastKRR.from_models(models, torch.arange(N_TRAIN_SAMPLES))

    def test_accepts_equal_kernel_copies(self, sine_data, rbf_kernel):
        X, y = sine_data
        twin = gpytorch.kernels.RBFKernel()
        twin.lengthscale = 0.5
        models = [KRR.fit(X[:100], y[:100], 1e-3, rbf_kernel), KRR.fit(X[100:], y[100:], 1e-3, twin)]
        model = FastKRR.from_models(models, torch.arange(N_TRAIN_SAMPLES))
        assert model.m == 2


class TestFitPar:
    def test_matches_serial_fit(self, sine_data, rbf_kernel):
        X, y = sine_data
        serial = FastKRR.fit(X, y, LAMBDA, 4, rbf_kernel, rng=5)
        parallel = FastKRR.fit_par(
            N_TRAIN_SAMPLES, lambda idx: X[idx], lambda idx: y[idx], LAMBDA, 4, rbf_kernel, rng=5
        )

        assert torch.equal(parallel.perm, serial.perm)
        assert [X_i.shape[0] for X_i in parallel.X] == make_blocks(N_TRAIN_SAMPLES, 4)
        assert torch.equal(torch.cat(parallel.X), torch.cat(serial.X))
        assert torch.allclose(torch.cat(parallel.alpha), torch.cat(serial.alpha), atol=1e-10)

    def test_custom_executor(self, sine_data, rbf_kernel, query_points):
        X, y = sine_data
        with ThreadPoolExecutor(max_workers=2) as executor:
            model = FastKRR.fit_par(
                N_TRAIN_SAMPLES,
                lambda idx: X[idx],
                lambda idx: y[idx],
                LAMBDA,
                3,
                rbf_kernel,
                rng=6,
                executor=executor,
            )
        assert model.predict(query_points).shape == (50,)

    def test_failing_block_fails_fit(self, sine_data, rbf_kernel):
        X, y = sine_data

        def get_y(idx):
            if 0 in idx:
                raise RuntimeError("cannot load block")
            return y[idx]

        with pytest.raises(RuntimeError, match="cannot load block"):
            FastKRR.fit_par(N_TRAIN_SAMPLES, lambda idx: X[idx], get_y, LAMBDA, 3, rbf_kernel)

    def test_rejects_non_positive_lambda(self, sine_data, rbf_kernel):
        X, y = sine_data
        with pytest.raises(PreconditionError):
            FastKRR.fit_par(N_TRAIN_SAMPLES, lambda idx: X[idx], lambda idx: y[idx], 0.0, 3, rbf_kernel)


class TestFitAndPredict:
    def test_matches_per_cluster_krr(self, clustered_data, rbf_kernel):
        X, y = clustered_data
        with pytest.warns(BlockCountWarning):
            pred = FastKRR.fit_and_predict(X, y, LAMBDA, N_CLUSTERS, rbf_kernel, rng=0)

        assignments, _ = cluster_assignments(X, N_CLUSTERS, rng=0)
        assert pred.shape == y.shape
        for c in range(N_CLUSTERS):
            members = assignments == c
            expected = KRR.fit(X[members], y[members], LAMBDA, rbf_kernel).fitted()
            assert torch.allclose(pred[members], expected, atol=1e-8)

    def test_predictions_in_original_order(self, clustered_data, rbf_kernel):
        X, y = clustered_data
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", BlockCountWarning)
            pred = FastKRR.fit_and_predict(X, y, LAMBDA, N_CLUSTERS, rbf_kernel, rng=1)
        assert torch.corrcoef(torch.stack([pred, y]))[0, 1] > 0.9
