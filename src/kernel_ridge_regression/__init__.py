"""Kernel Ridge Regression and scalable approximations"""

import logging

from kernel_ridge_regression.api import fit, fit_and_predict, fit_par, fitted, predict
from kernel_ridge_regression.errors import (
    BlockCountWarning,
    BlockImbalanceWarning,
    NotSupportedError,
    PreconditionError,
    SolverError,
)
from kernel_ridge_regression.fast_krr import FastKRR
from kernel_ridge_regression.kernel_approx import NystromKRR, SomethingKRR, SubsetRegressorsKRR
from kernel_ridge_regression.krr import KRR, TruncatedNewtonKRR
from kernel_ridge_regression.random_features import RandomFourierFeatures
from kernel_ridge_regression.utils import make_blocks, merge_values, unmerge_values

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "KRR",
    "FastKRR",
    "TruncatedNewtonKRR",
    "RandomFourierFeatures",
    "SubsetRegressorsKRR",
    "NystromKRR",
    "SomethingKRR",
    "fit",
    "fit_par",
    "fit_and_predict",
    "fitted",
    "predict",
    "make_blocks",
    "merge_values",
    "unmerge_values",
    "PreconditionError",
    "SolverError",
    "NotSupportedError",
    "BlockCountWarning",
    "BlockImbalanceWarning",
]
