"""Default numerical constants shared by the estimators."""

import torch

DEFAULT_DTYPE = torch.float64

# Eigenvalues of the landmark Gram matrix at or below this are dropped
NYSTROM_EIGENVALUE_THRESHOLD = 1e-1
DEFAULT_NYSTROM_CLUSTERS = 5

# Block count limits m <= n^p for FastKRR. The theoretical limit holds for
# polynomial kernels, the gaussian kernel tolerates a little less blocks.
THEORETICAL_BLOCK_EXPONENT = 0.33
EMPIRICAL_BLOCK_EXPONENT = 0.45

TRUNCATED_NEWTON_EPS = 0.5
TRUNCATED_NEWTON_MAX_ITER = 200
