import collections.abc as cabc
import functools
import inspect

import dask

import proxpd.info.deps as ppd
import proxpd.info.ptype as ppt

__all__ = [
    "compute",
    "get_array_module",
    "parse_params",
    "redirect",
    "to_NUMPY",
]


def parse_params(func: cabc.Callable, *args, **kwargs) -> dict:
    """
    Bind a call `func(*args, **kwargs)` to the signature of `func`.

    Returns
    -------
    params: dict
        (name, value) pairs such that `func(**params)` is equivalent to the original call.  Defaults are filled in.
    """
    bound = inspect.signature(func).bind(*args, **kwargs)
    bound.apply_defaults()

    params = dict(zip(bound.arguments, bound.args))
    params.update(bound.kwargs)
    return params


def get_array_module(x, fallback: ppt.ArrayModule = None) -> ppt.ArrayModule:
    """
    Array namespace (numpy, dask.array or cupy) backing `x`.

    Parameters
    ----------
    x: object
        Array, or any other object.
    fallback: ArrayModule
        Namespace returned if `x` is not an array of a known backend.  If omitted, such inputs are an error.

    Raises
    ------
    ValueError
        If `x` is not an array and no `fallback` was given.
    """
    try:
        return ppd.NDArrayInfo.from_obj(x).module()
    except ValueError:
        if fallback is None:
            raise ValueError(f"Could not infer array module for {type(x)}.")
        return fallback


def redirect(
    i: ppt.VarName,
    **kwargs: cabc.Mapping[str, cabc.Callable],
) -> cabc.Callable:
    """
    Dispatch a function to a backend-specific implementation.

    The array passed as parameter `i` of the decorated function decides the code path: if its backend short-name
    (see :py:class:`~proxpd.info.deps.NDArrayInfo`) is a key of `kwargs`, the associated function runs instead.
    Replacement functions must accept the same parameters as the decorated one.

    Example
    -------
    .. code-block:: python3

       def _accumulate_dask(arr, parts, size): ...  # out-of-place reduction

       @redirect("arr", DASK=_accumulate_dask)
       def _accumulate(arr, parts, size): ...  # in-place reduction
    """

    def decorator(func: cabc.Callable) -> cabc.Callable:
        @functools.wraps(func)
        def wrapper(*ARGS, **KWARGS):
            try:
                func_args = parse_params(func, *ARGS, **KWARGS)
            except TypeError as e:
                raise ValueError(f"Could not parameterize {func.__qualname__}().") from e
            if i not in func_args:
                raise ValueError(f"Parameter[{i}] not part of {func.__qualname__}() parameter list.")

            ndi = ppd.NDArrayInfo.from_obj(func_args[i])
            f = kwargs.get(ndi.name, func)
            return f(**func_args)

        return wrapper

    return decorator


def compute(*args, mode: str = "compute", **kwargs):
    r"""
    Evaluate (or persist) DASK collections.

    Non-DASK arguments go through unchanged.  A single argument is returned as-is, several as a tuple.

    Parameters
    ----------
    mode: str
        "compute" or "persist".
    \*\*kwargs: dict
        Forwarded to :py:func:`dask.compute` or :py:func:`dask.persist`.
    """
    func = dict(compute=dask.compute, persist=dask.persist).get(str(mode).strip().lower())
    if func is None:
        raise ValueError(f"mode: expected compute/persist, got {mode}.")

    out = func(*args, **kwargs)
    return out[0] if len(args) == 1 else out


def to_NUMPY(x: ppt.NDArray) -> ppt.NDArray:
    """
    Host (NUMPY) copy of an array.  NUMPY inputs are returned as-is.
    """
    N = ppd.NDArrayInfo
    ndi = N.from_obj(x)
    if ndi == N.DASK:
        return compute(x)
    elif ndi == N.CUPY:
        return x.get()
    return x
