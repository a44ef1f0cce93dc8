import collections.abc as cabc
import numbers as nb
import pathlib as plib
import typing as typ

import numpy.typing as npt

import proxpd.info.deps as ppd

#: Supported dense array types.
NDArray = typ.TypeVar("NDArray", *ppd.supported_array_types())

#: Supported dense array modules.
ArrayModule = typ.TypeVar(
    "ArrayModule",
    *[typ.Literal[_] for _ in ppd.supported_array_modules()],
)

#: Supported sparse array types.
if len(sst := ppd.supported_sparse_types()) == 1:
    SparseArray = typ.TypeVar("SparseArray", bound=tuple(sst)[0])
else:
    SparseArray = typ.TypeVar("SparseArray", *sst)

Integer = nb.Integral
Real = nb.Real  #: Alias of :py:class:`numbers.Real`.
DType = npt.DTypeLike  #: :py:attr:`~proxpd.info.ptype.NDArray` dtype specifier.
Path = typ.Union[str, plib.Path]  #: Path-like object.
VarName = typ.Union[str, cabc.Collection[str]]  #: Variable name(s).
Param = typ.Union[Real, NDArray]  #: Scalar or per-coordinate parameter.
