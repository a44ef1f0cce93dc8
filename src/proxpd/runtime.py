import collections.abc as cabc
import contextlib
import enum
import functools
import numbers as nb

import numpy as np

import proxpd.info.deps as ppd
import proxpd.info.error as ppe
import proxpd.info.ptype as ppt
import proxpd.util as ppu

__all__ = [
    "Width",
    "coerce",
    "Context",
    "enforce_precision",
    "EnforcePrecision",
    "getCoerceState",
    "getPrecision",
    "Precision",
]


@enum.unique
class Width(enum.Enum):
    """
    Floating-point widths iterates can be computed in.
    """

    SINGLE = np.dtype(np.single)
    DOUBLE = np.dtype(np.double)

    def eps(self) -> ppt.Real:
        """
        Machine epsilon: gap between 1 and the next representable float.
        """
        return float(np.finfo(self.value).eps)


# Process-wide runtime switches.  Modify them locally via Precision/EnforcePrecision.
_runtime = dict(
    width=Width.DOUBLE,
    coerce=True,
)


class _RuntimeOverride(contextlib.AbstractContextManager):
    # Set a runtime switch for the duration of a with-block, then restore the value it had at construction time.

    _key: str

    def __init__(self, value):
        self._value = value
        self._value_prev = _runtime[self._key]

    def __enter__(self):
        _runtime[self._key] = self._value
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> bool:
        _runtime[self._key] = self._value_prev
        return False


class Precision(_RuntimeOverride):
    """
    Locally change the runtime floating-point precision.

    Example
    -------
    .. code-block:: python3

       import proxpd.runtime as pprt

       pprt.getPrecision()  # Width.DOUBLE
       with pprt.Precision(pprt.Width.SINGLE):
           pprt.getPrecision()  # Width.SINGLE
    """

    _key = "width"


class EnforcePrecision(_RuntimeOverride):
    """
    Locally enable/disable the effect of :py:func:`~proxpd.runtime.enforce_precision`.  (Default: enabled.)
    """

    _key = "coerce"


def getPrecision() -> Width:
    """
    Current runtime floating-point precision.
    """
    return _runtime["width"]


def getCoerceState() -> bool:
    """
    False if :py:func:`~proxpd.runtime.coerce` is currently a no-op.
    """
    return _runtime["coerce"]


def coerce(x):
    """
    Cast a scalar or array to the runtime precision.

    A no-op when :py:func:`~proxpd.runtime.getCoerceState` is False.

    Raises
    ------
    TypeError
        If `x` cannot be cast safely, e.g. complex-valued inputs.
    """
    if not getCoerceState():
        return x

    dtype = getPrecision().value
    if isinstance(x, ppt.Real):
        return np.array(x, dtype=dtype)[()]
    elif (not isinstance(x, nb.Number)) and np.can_cast(getattr(x, "dtype", object), dtype, casting="same_kind"):
        return x.astype(dtype, copy=False)
    raise TypeError(f"Cannot coerce {type(x)} to scalar/array of precision {dtype}.")


def enforce_precision(
    i: ppt.VarName = frozenset(),
    o: bool = True,
    allow_None: bool = True,
) -> cabc.Callable:
    """
    Decorator casting selected parameters (and the output) of a function to the runtime precision.

    Parameters
    ----------
    i: VarName
        Parameters to :py:func:`~proxpd.runtime.coerce`.
    o: bool
        Coerce the function's output as well.  Requires a scalar/array output.
    allow_None: bool
        Let parameters in `i` be None.

    Example
    -------
    .. code-block:: python3

       @pprt.enforce_precision(i=("arr", "tau_diag"))
       def prox(self, arr, tau, tau_diag=None): ...
    """
    names = (i,) if isinstance(i, str) else tuple(i)

    def decorator(func: cabc.Callable) -> cabc.Callable:
        @functools.wraps(func)
        def wrapper(*ARGS, **KWARGS):
            func_args = ppu.parse_params(func, *ARGS, **KWARGS)
            for k in names:
                if k not in func_args:
                    raise ValueError(f"Parameter[{k}] not part of {func.__qualname__}() parameter list.")
                if func_args[k] is not None:
                    func_args[k] = coerce(func_args[k])
                elif not allow_None:
                    raise ValueError(f"Parameter[{k}] cannot be None-valued.")

            out = func(**func_args)
            if o and (out is not None):
                out = coerce(out)
            return out

        return wrapper

    return decorator


class Context:
    """
    Execution context shared by the operators and the solver of a problem.

    A context pins the array backend iterates live on, the floating-point width they are computed in, and whether
    NUMPY-backed linear operators evaluate their blocks in parallel via Dask.

    Example
    -------
    .. code-block:: python3

       import proxpd.info.deps as ppd
       import proxpd.runtime as pprt

       ctx = pprt.Context(backend=ppd.NDArrayInfo.NUMPY, width=pprt.Width.SINGLE)
       x = ctx.zeros(5)  # float32 NumPy array
    """

    def __init__(
        self,
        backend: ppd.NDArrayInfo = None,
        width: Width = None,
        parallel: bool = False,
    ):
        """
        Parameters
        ----------
        backend: NDArrayInfo
            Array backend.  [Default: NUMPY]
        width: Width
            Floating-point width of iterates.  [Default: runtime's precision at construction time.]
        parallel: bool
            Evaluate linear-operator blocks in parallel via Dask when fed NUMPY inputs.

        Raises
        ------
        DeviceUnavailable
            If `backend` cannot be used in the current install, e.g. CUPY without a usable GPU.
        """
        if backend is None:
            backend = ppd.NDArrayInfo.default()
        if width is None:
            width = getPrecision()

        try:
            assert isinstance(backend, ppd.NDArrayInfo)
            assert isinstance(width, Width)
        except Exception:
            raise ppe.InvalidParameter(f"Context: unknown backend/width pair ({backend}, {width}).")

        if not backend.available():
            raise ppe.DeviceUnavailable(f"Context: {backend.name} backend cannot be acquired.")

        self._backend = backend
        self._width = width
        self._parallel = bool(parallel)

    @property
    def backend(self) -> ppd.NDArrayInfo:
        return self._backend

    @property
    def width(self) -> Width:
        return self._width

    @property
    def parallel(self) -> bool:
        return self._parallel

    @property
    def xp(self) -> ppt.ArrayModule:
        return self._backend.module()

    @property
    def dtype(self) -> np.dtype:
        return self._width.value

    def asarray(self, x) -> ppt.NDArray:
        """
        Move `x` to the context's backend and width.
        """
        try:
            ndi = ppd.NDArrayInfo.from_obj(x)
        except ValueError:
            ndi = None
        if ndi == self._backend:
            y = x
        else:
            y = self.xp.asarray(ppu.to_NUMPY(x) if ndi is not None else x)
        return y.astype(self.dtype, copy=False)

    def zeros(self, shape) -> ppt.NDArray:
        return self.xp.zeros(shape, dtype=self.dtype)

    def __repr__(self) -> str:
        return f"Context(backend={self._backend.name}, width={self._width.name}, parallel={self._parallel})"
