import numpy as np

import proxpd.info.error as ppe
import proxpd.info.ptype as ppt
import proxpd.util.array_module as ppam

__all__ = [
    "as_param",
    "check_size",
    "read_only",
]


def check_size(arr: ppt.NDArray, size: ppt.Integer, name: str = "arr"):
    """
    Ensure the core (i.e. trailing) dimension of `arr` equals `size`.

    Raises
    ------
    DimensionMismatch
    """
    n = arr.shape[-1] if arr.ndim > 0 else 1
    if n != size:
        raise ppe.DimensionMismatch(f"{name}: expected core dimension {size}, got {n}.")


def as_param(x, size: ppt.Integer, name: str) -> ppt.Param:
    """
    Validate a scalar-or-vector parameter attached to a `size`-dimensional operator.

    Returns
    -------
    p: Real, NDArray
        `x` as a Python float if scalar, otherwise `x` unchanged (NDArray of shape (size,)).
    """
    if isinstance(x, ppt.Real):
        return float(x)
    try:
        ppam.get_array_module(x)
    except ValueError:
        x = np.asarray(x, dtype=float)
    if x.shape != (size,):
        raise ppe.DimensionMismatch(f"{name}: expected scalar or ({size},) vector, got shape {x.shape}.")
    return x


def read_only(x: ppt.NDArray) -> ppt.NDArray:
    """
    Make an array read-only.

    Only NUMPY arrays carry a write flag: other backends are returned as views.
    """
    if isinstance(x, np.ndarray):
        y = x.view()
        y.flags.writeable = False
    else:
        y = x.view() if hasattr(x, "view") else x
    return y
