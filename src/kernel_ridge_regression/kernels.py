from copy import deepcopy

import torch
from gpytorch.kernels import Kernel
from torch import Tensor

from kernel_ridge_regression.config import DEFAULT_DTYPE
from kernel_ridge_regression.errors import PreconditionError
from kernel_ridge_regression.utils import freeze_parameters

_SCALAR_TYPES = (bool, int, float, str, tuple, type(None))


def prepare_kernel(kernel: Kernel, dtype: torch.dtype = DEFAULT_DTYPE) -> Kernel:
    """Return a frozen, evaluation-mode copy of kernel cast to dtype.

    Fitted models own their kernel, so later changes to the caller's kernel
    do not leak into predictions.
    """
    if not isinstance(kernel, Kernel):
        raise PreconditionError(
            f"kernel must be a gpytorch Kernel, got {type(kernel).__name__}"
        )
    kernel = deepcopy(kernel).to(dtype)
    freeze_parameters(kernel)
    kernel.eval()
    return kernel


def kernel_matrix(
    kernel: Kernel, A: Tensor, B: Tensor | None = None, out: Tensor | None = None
) -> Tensor:
    """Evaluate the dense Gram matrix between the rows of A and B.

    Args:
        kernel: GPyTorch kernel
        A: Data of shape (n_A, d)
        B: Data of shape (n_B, d), defaults to A
        out: Optional buffer of shape (n_A, n_B) receiving the result. GPyTorch
            always materializes a fresh dense tensor, which is then copied
            into ``out``, so the buffer only keeps the caller's storage stable
            and saves no allocation.

    Returns:
        Gram matrix of shape (n_A, n_B), ``out`` when given
    """
    if B is None:
        B = A
    with torch.no_grad():
        K = kernel(A, B).to_dense()
    if out is None:
        return K
    if out.shape != K.shape:
        raise PreconditionError(
            f"buffer has shape {tuple(out.shape)}, expected {tuple(K.shape)}"
        )
    return out.copy_(K)


def _hyperparameters(module: torch.nn.Module) -> dict:
    """Plain scalar settings such as Matern ``nu`` that live outside the state dict."""
    return {
        key: value
        for key, value in vars(module).items()
        if not key.startswith("_")
        and key != "training"
        and isinstance(value, _SCALAR_TYPES)
    }


def kernels_equal(a: Kernel, b: Kernel) -> bool:
    """Structural equality of two kernels.

    Kernels are equal when their module trees have the same types, the same
    scalar hyperparameters and identical parameter and buffer values.
    """
    modules_a = list(a.named_modules())
    modules_b = list(b.named_modules())
    if len(modules_a) != len(modules_b):
        return False
    for (name_a, mod_a), (name_b, mod_b) in zip(modules_a, modules_b):
        if name_a != name_b or type(mod_a) is not type(mod_b):
            return False
        if _hyperparameters(mod_a) != _hyperparameters(mod_b):
            return False

    state_a, state_b = a.state_dict(), b.state_dict()
    if state_a.keys() != state_b.keys():
        return False
    return all(
        state_a[key].dtype == state_b[key].dtype
        and torch.equal(state_a[key], state_b[key])
        for key in state_a
    )
