import torch
from torch import Tensor

from kernel_ridge_regression.errors import PreconditionError, SolverError


def cholesky_solve(A: Tensor, b: Tensor) -> Tensor:
    """Solve A x = b for a symmetric (or Hermitian) positive definite A.

    Raises:
        SolverError: If A is not positive definite
    """
    try:
        L = torch.linalg.cholesky(A)
    except torch.linalg.LinAlgError as err:
        raise SolverError(
            "Cholesky factorization failed, the regularized matrix is not positive definite"
        ) from err
    return torch.cholesky_solve(b.unsqueeze(-1), L).squeeze(-1)


def ridge_solve_(K: Tensor, y: Tensor, shift: float) -> Tensor:
    """Solve (K + shift * I) x = y, adding shift to the diagonal of K in place."""
    K.diagonal().add_(shift)
    return cholesky_solve(K, y)


def direct_solve(A: Tensor, b: Tensor) -> Tensor:
    """Solve a general square system, failing on singular matrices."""
    try:
        return torch.linalg.solve(A, b)
    except torch.linalg.LinAlgError as err:
        raise SolverError("direct solve failed, the system matrix is singular") from err


def truncated_newton_(
    A: Tensor, b: Tensor, x: Tensor, eps: float, max_iter: int
) -> Tensor:
    """Solve A x = b with conjugate gradients, overwriting x.

    Iterates at most max_iter times and stops as soon as the squared
    residual norm drops below eps.

    Args:
        A: Symmetric positive definite matrix of shape (n, n)
        b: Right hand side of shape (n,)
        x: Initial guess of shape (n,), updated in place
        eps: Stopping threshold on r^T r
        max_iter: Maximum number of iterations

    Returns:
        x
    """
    if max_iter < 0:
        raise PreconditionError(f"max_iter must be non-negative, got {max_iter}")

    r = b - A @ x
    p = r.clone()
    rs_old = torch.dot(r, r)
    if rs_old == 0:
        return x

    for _ in range(max_iter):
        Ap = A @ p
        step = rs_old / torch.dot(p, Ap)
        x.add_(step * p)
        r.sub_(step * Ap)
        rs_new = torch.dot(r, r)
        if rs_new < eps:
            break
        p.mul_(rs_new / rs_old).add_(r)
        rs_old = rs_new
    return x
