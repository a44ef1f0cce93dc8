import collections.abc as cabc
import enum
import importlib.util
import types

import dask.array
import numpy
import scipy.sparse

#: Show if the CuPy backend is usable: package installed *and* a GPU reachable.
CUPY_ENABLED: bool = importlib.util.find_spec("cupy") is not None
if CUPY_ENABLED:
    try:
        import cupy
        import cupyx.scipy.sparse

        cupy.is_available()  # fails if hardware/drivers/runtime missing
    except Exception:
        CUPY_ENABLED = False


@enum.unique
class NDArrayInfo(enum.Enum):
    """
    Dense array backends iterates may live on.
    """

    NUMPY = enum.auto()
    DASK = enum.auto()
    CUPY = enum.auto()

    @classmethod
    def default(cls) -> "NDArrayInfo":
        """Backend of a :py:class:`~proxpd.runtime.Context` built without one."""
        return cls.NUMPY

    def available(self) -> bool:
        """Backend can be used in the current install."""
        return (self != NDArrayInfo.CUPY) or CUPY_ENABLED

    def type(self) -> type:
        """Array type of the backend.  (``NoneType`` for unavailable backends.)"""
        if not self.available():
            return type(None)
        return {
            "NUMPY": lambda: numpy.ndarray,
            "DASK": lambda: dask.array.Array,
            "CUPY": lambda: cupy.ndarray,
        }[self.name]()

    def module(self) -> types.ModuleType:
        """Array namespace of the backend.  (``None`` for unavailable backends.)"""
        if not self.available():
            return None
        return {
            "NUMPY": lambda: numpy,
            "DASK": lambda: dask.array,
            "CUPY": lambda: cupy,
        }[self.name]()

    @classmethod
    def from_obj(cls, obj) -> "NDArrayInfo":
        """Backend `obj` belongs to."""
        for ndi in cls:
            if ndi.available() and isinstance(obj, ndi.type()):
                return ndi
        raise ValueError(f"No known array type to match {obj}.")


@enum.unique
class SparseArrayInfo(enum.Enum):
    """
    Sparse matrix backends accepted by :py:class:`~proxpd.linop.SparseBlock`.
    """

    SCIPY_SPARSE = enum.auto()
    CUPY_SPARSE = enum.auto()

    def available(self) -> bool:
        return (self != SparseArrayInfo.CUPY_SPARSE) or CUPY_ENABLED

    def type(self) -> type:
        if not self.available():
            return type(None)
        if self == SparseArrayInfo.SCIPY_SPARSE:
            return scipy.sparse.spmatrix  # all `*_matrix` classes descend from it
        return cupyx.scipy.sparse.spmatrix

    def module(self) -> types.ModuleType:
        if not self.available():
            return None
        if self == SparseArrayInfo.SCIPY_SPARSE:
            return scipy.sparse
        return cupyx.scipy.sparse


def supported_array_types() -> cabc.Collection[type]:
    """Dense array types usable in the current install."""
    return tuple(ndi.type() for ndi in NDArrayInfo if ndi.available())


def supported_array_modules() -> cabc.Collection[types.ModuleType]:
    """Dense array namespaces usable in the current install."""
    return tuple(ndi.module() for ndi in NDArrayInfo if ndi.available())


def supported_sparse_types() -> cabc.Collection[type]:
    """Sparse matrix types usable in the current install."""
    return tuple(sai.type() for sai in SparseArrayInfo if sai.available())


__all__ = [
    "CUPY_ENABLED",
    "NDArrayInfo",
    "SparseArrayInfo",
    "supported_array_types",
    "supported_array_modules",
    "supported_sparse_types",
]
