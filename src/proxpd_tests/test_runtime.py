import numpy as np
import pytest

import proxpd.info.deps as ppd
import proxpd.info.error as ppe
import proxpd.runtime as pprt


class TestPrecisionContextManager:
    @pytest.mark.parametrize("w", pprt.Width)
    def test_contextManager(self, w: pprt.Width):
        with pprt.Precision(w):
            assert pprt.getPrecision() == w

    def test_restore(self):
        default = pprt.getPrecision()
        with pprt.Precision(pprt.Width.SINGLE):
            pass
        assert pprt.getPrecision() == default


class TestEnforcePrecisionContextManager:
    @pytest.mark.parametrize("state", [True, False])
    def test_contextManager(self, state: bool):
        assert pprt.getCoerceState() is True  # default
        with pprt.EnforcePrecision(state):
            assert pprt.getCoerceState() == state


class TestEnforcePrecisionDecorator:
    def right_dtype(self, x):
        return x.dtype == pprt.getPrecision().value

    def test_CM_noOp(self):
        @pprt.enforce_precision("x")
        def f(x):
            return x

        with pprt.EnforcePrecision(False):
            x = 1
            assert x is f(x)

    @pytest.mark.parametrize(
        "value",
        [
            0.1,  # Python float
            1,  # Python int
            np.int8(-1),  # NumPy dtypes
            np.uint8(1),
            True,  # Python T/F
        ],
    )
    def test_valid_scalar_io(self, value):
        @pprt.enforce_precision("x")
        def f(x):
            assert self.right_dtype(x)
            return x + 1

        with pprt.Precision(pprt.Width.SINGLE):
            assert self.right_dtype(f(value))

    @pytest.mark.parametrize(
        "value",
        [
            1j,  # Python complex
            np.complex64(2),  # NumPy complex dtype
        ],
    )
    def test_invalid_scalar_io(self, value):
        @pprt.enforce_precision("xx")
        def f(xx):  # explicitly test multi-character strings
            return xx + 1

        with pytest.raises(TypeError):
            f(value)

    def test_multi_i(self):
        @pprt.enforce_precision(["x", "y"])
        def f(x, y, z):
            assert self.right_dtype(x)
            assert self.right_dtype(y)
            return x + y

        with pprt.Precision(pprt.Width.SINGLE):
            f(1, 1.0, True)

    def test_valid_array_io(self, xp):
        @pprt.enforce_precision("x")
        def f(x):
            assert self.right_dtype(x)
            return x + 1

        with pprt.Precision(pprt.Width.SINGLE):
            out = f(xp.arange(5))
            assert self.right_dtype(out)

    def test_None_input(self):
        @pprt.enforce_precision("x", allow_None=True)
        def f(x):
            return x

        @pprt.enforce_precision("x", allow_None=False)
        def g(x):
            return x

        assert f(None) is None
        with pytest.raises(ValueError):
            g(None)

    def test_unknown_parameter(self):
        @pprt.enforce_precision("y")
        def f(x):
            return x

        with pytest.raises(ValueError):
            f(1)


class TestCoerce:
    @pytest.mark.parametrize("w", pprt.Width)
    def test_array(self, xp, w):
        x = xp.arange(4)
        with pprt.Precision(w):
            y = pprt.coerce(x)
        assert y.dtype == w.value

    def test_complex_array(self):
        x = np.ones(3, dtype=np.complex128)
        with pytest.raises(TypeError):
            pprt.coerce(x)

    def test_noOp(self):
        x = np.arange(3)
        with pprt.EnforcePrecision(False):
            assert pprt.coerce(x) is x


class TestContext:
    def test_default(self):
        ctx = pprt.Context()
        assert ctx.backend == ppd.NDArrayInfo.NUMPY
        assert ctx.width == pprt.getPrecision()
        assert ctx.parallel is False
        assert ctx.xp is np

    def test_default_width_follows_runtime(self):
        with pprt.Precision(pprt.Width.SINGLE):
            ctx = pprt.Context()
        assert ctx.width == pprt.Width.SINGLE

    @pytest.mark.parametrize(
        "kwargs",
        [
            dict(backend="numpy"),
            dict(width=np.float32),
        ],
    )
    def test_invalid(self, kwargs):
        with pytest.raises(ppe.InvalidParameter):
            pprt.Context(**kwargs)

    @pytest.mark.skipif(ppd.CUPY_ENABLED, reason="GPU backend is available.")
    def test_unavailable_device(self):
        with pytest.raises(ppe.DeviceUnavailable):
            pprt.Context(backend=ppd.NDArrayInfo.CUPY)

    def test_asarray(self, ctx):
        x = np.arange(5)
        y = ctx.asarray(x)
        assert ppd.NDArrayInfo.from_obj(y) == ctx.backend
        assert y.dtype == ctx.dtype
        assert y.shape == (5,)

    def test_zeros(self, ctx):
        z = ctx.zeros((2, 3))
        assert ppd.NDArrayInfo.from_obj(z) == ctx.backend
        assert z.dtype == ctx.dtype
        assert z.shape == (2, 3)
