from abc import ABC, abstractmethod

from torch import Tensor

from kernel_ridge_regression.errors import NotSupportedError


class AbstractKRR(ABC):
    """Base class shared by every kernel ridge regression variant.

    Models are immutable values created by the ``fit`` classmethod. They
    keep the training data (or a subset of it) because predictions evaluate
    the kernel against training points.
    """

    lam: float

    # fields shown by __repr__
    _repr_fields: tuple[str, ...] = ("lam", "kernel")

    @classmethod
    @abstractmethod
    def fit(cls, X, y, *args, **kwargs) -> "AbstractKRR":
        """Fit the model on data X of shape (n, d) and responses y of shape (n,)."""
        ...

    @abstractmethod
    def predict(self, X) -> Tensor:
        """Predict responses for new data of shape (n_new, d).

        Returns:
            Predictions of shape (n_new,)
        """
        ...

    @classmethod
    def fit_and_predict(cls, X, y, *args, **kwargs) -> Tensor:
        raise NotSupportedError(f"fit_and_predict is not defined for {cls.__name__}")

    def fitted(self) -> Tensor:
        """In-sample predictions on the retained training data."""
        return self.predict(self.X)

    def __repr__(self) -> str:
        lines = [f"{type(self).__name__}:"]
        for name in self._repr_fields:
            lines.append(f"    {name} = {getattr(self, name)}")
        return "\n".join(lines)
