import types
import typing as typ

import numpy as np
import pytest

import proxpd.info.deps as ppd
import proxpd.info.ptype as ppt
import proxpd.runtime as pprt
import proxpd.util as ppu


@pytest.fixture(params=ppd.supported_array_modules())
def xp(request) -> types.ModuleType:
    return request.param


@pytest.fixture(params=pprt.Width)
def width(request) -> pprt.Width:
    return request.param


@pytest.fixture
def ctx(xp, width) -> pprt.Context:
    return pprt.Context(backend=ndi_of(xp), width=width)


def ndi_of(xp: types.ModuleType) -> ppd.NDArrayInfo:
    # Array backend associated to an array module.
    for ndi in ppd.NDArrayInfo:
        if ndi.available() and (ndi.module() is xp):
            return ndi
    raise ValueError(f"No known backend for {xp}.")


def isclose(
    a: typ.Union[ppt.Real, ppt.NDArray],
    b: typ.Union[ppt.Real, ppt.NDArray],
    as_dtype: ppt.DType,
) -> ppt.NDArray:
    """
    Equivalent of `xp.isclose`, but where atol is automatically chosen based on `as_dtype`.

    This function always returns a computed NUMPY array.
    """
    atol = {
        pprt.Width.SINGLE.value: 2e-4,
        pprt.Width.DOUBLE.value: 1e-8,
    }
    # Numbers obtained by:
    # * \sum_{k >= (p+1)//2} 2^{-k}, where p=<number of mantissa bits>; then
    # * round up value to 3 significant decimal digits.
    # N_mantissa = [23, 52] for [single, double] respectively.

    prec = atol.get(np.dtype(as_dtype), 1e-8)  # default only should occur for integer types
    a, b = [ppu.to_NUMPY(_) if hasattr(_, "shape") else _ for _ in (a, b)]
    eq = np.isclose(a, b, atol=prec)
    return eq


def allclose(
    a: ppt.NDArray,
    b: ppt.NDArray,
    as_dtype: ppt.DType,
) -> bool:
    """
    Equivalent of `all(isclose)`, but where atol is automatically chosen based on `as_dtype`.
    """
    return bool(np.all(isclose(a, b, as_dtype)))
