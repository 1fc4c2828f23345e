"""Tests for the variant-tagged entry points."""

import pytest
import torch

import kernel_ridge_regression as krr
from kernel_ridge_regression.errors import NotSupportedError

from .conftest import N_TRAIN_SAMPLES


def test_fit_and_predict_dispatch(sine_data, rbf_kernel, query_points):
    X, y = sine_data
    model = krr.fit(krr.KRR, X, y, 1e-3, rbf_kernel)

    assert isinstance(model, krr.KRR)
    assert torch.allclose(krr.predict(model, query_points), model.predict(query_points))
    assert torch.allclose(krr.fitted(model), model.fitted())


@pytest.mark.parametrize(
    "model_type,args",
    [
        ("FastKRR", (1e-3, 3)),
        ("TruncatedNewtonKRR", (1e-3,)),
        ("SubsetRegressorsKRR", (1e-2, 20)),
        ("NystromKRR", (1e-2, 20)),
    ],
)
def test_fit_every_kernel_variant(sine_data, rbf_kernel, query_points, model_type, args):
    X, y = sine_data
    variant = getattr(krr, model_type)
    model = krr.fit(variant, X, y, *args, rbf_kernel)

    assert isinstance(model, variant)
    assert krr.predict(model, query_points).shape == (50,)


def test_fit_random_features(sine_data, query_points):
    X, y = sine_data
    model = krr.fit(krr.RandomFourierFeatures, X, y, 1e-4, 50, 1.0, rng=0)
    assert krr.predict(model, query_points).shape == (50,)


def test_unknown_model_type(sine_data):
    X, y = sine_data
    with pytest.raises(TypeError):
        krr.fit(dict, X, y)


def test_predict_rejects_non_model(query_points):
    with pytest.raises(TypeError):
        krr.predict(object(), query_points)


def test_fit_par(sine_data, rbf_kernel):
    X, y = sine_data
    model = krr.fit_par(
        krr.FastKRR, N_TRAIN_SAMPLES, lambda idx: X[idx], lambda idx: y[idx], 1e-3, 3, rbf_kernel
    )
    assert isinstance(model, krr.FastKRR)


def test_fit_par_only_for_fast_krr(sine_data, rbf_kernel):
    X, y = sine_data
    with pytest.raises(NotSupportedError):
        krr.fit_par(krr.KRR, N_TRAIN_SAMPLES, lambda idx: X[idx], lambda idx: y[idx], 1e-3, rbf_kernel)


def test_fit_and_predict_not_supported(sine_data, rbf_kernel):
    X, y = sine_data
    with pytest.raises(NotSupportedError):
        krr.fit_and_predict(krr.KRR, X, y, 1e-3, rbf_kernel)


def test_fitted_not_supported_for_fast_krr(sine_data, rbf_kernel):
    X, y = sine_data
    model = krr.fit(krr.FastKRR, X, y, 1e-3, 2, rbf_kernel)
    with pytest.raises(NotSupportedError):
        krr.fitted(model)
