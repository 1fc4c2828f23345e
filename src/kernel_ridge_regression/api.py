"""Variant-tagged entry points mirroring ``fit(Variant, ...)`` / ``predict(model, X)``."""

from torch import Tensor

from kernel_ridge_regression.base import AbstractKRR
from kernel_ridge_regression.errors import NotSupportedError
from kernel_ridge_regression.fast_krr import FastKRR
from kernel_ridge_regression.kernel_approx import NystromKRR, SomethingKRR, SubsetRegressorsKRR
from kernel_ridge_regression.krr import KRR, TruncatedNewtonKRR
from kernel_ridge_regression.random_features import RandomFourierFeatures

MODEL_TYPES: tuple[type[AbstractKRR], ...] = (
    KRR,
    FastKRR,
    TruncatedNewtonKRR,
    RandomFourierFeatures,
    SubsetRegressorsKRR,
    NystromKRR,
    SomethingKRR,
)


def _check_model_type(model_type) -> None:
    if model_type not in MODEL_TYPES:
        raise TypeError(f"unknown model type {model_type!r}")


def fit(model_type: type[AbstractKRR], *args, **kwargs) -> AbstractKRR:
    """Fit a model of the given variant, e.g. ``fit(FastKRR, X, y, lam, m, kernel)``."""
    _check_model_type(model_type)
    return model_type.fit(*args, **kwargs)


def predict(model: AbstractKRR, X) -> Tensor:
    if not isinstance(model, MODEL_TYPES):
        raise TypeError(f"cannot predict with {type(model).__name__}")
    return model.predict(X)


def fitted(model: AbstractKRR) -> Tensor:
    if not isinstance(model, MODEL_TYPES):
        raise TypeError(f"{type(model).__name__} is not a fitted model")
    return model.fitted()


def fit_par(model_type: type[AbstractKRR], n: int, get_X, get_y, *args, **kwargs) -> AbstractKRR:
    """Parallel fit with lazily loaded data, only defined for FastKRR."""
    _check_model_type(model_type)
    if model_type is not FastKRR:
        raise NotSupportedError(f"fit_par is not defined for {model_type.__name__}")
    return FastKRR.fit_par(n, get_X, get_y, *args, **kwargs)


def fit_and_predict(model_type: type[AbstractKRR], *args, **kwargs) -> Tensor:
    """Clustered fit returning in-sample predictions (FastKRR and NystromKRR)."""
    _check_model_type(model_type)
    return model_type.fit_and_predict(*args, **kwargs)
