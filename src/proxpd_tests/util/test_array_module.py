import dask.array as da
import numpy as np
import pytest
import scipy.sparse as sp

import proxpd.linop.block as pplb
import proxpd.linop.linop as ppll
import proxpd.util as ppu


class TestGetArrayModule:
    def test_array(self, xp):
        x = xp.arange(5)
        assert ppu.get_array_module(x) is xp

    @pytest.mark.parametrize(
        ["obj", "fallback", "fail"],
        [
            [None, None, True],
            [None, np, False],
            [1, None, True],
            [1, np, False],
        ],
    )
    def test_fallback(self, obj, fallback, fail):
        # object is not an array type, so fail or return provided fallback
        if not fail:
            assert ppu.get_array_module(obj, fallback) is fallback
        else:
            with pytest.raises(ValueError):
                assert ppu.get_array_module(obj, fallback)


class TestRedirect:
    # Backend dispatch as used by the block-operator kernels: DASK inputs take the out-of-place code path.

    @pytest.fixture
    def A(self) -> sp.csr_matrix:
        return sp.random(4, 6, density=0.5, format="csr", random_state=0)

    @pytest.fixture
    def parts(self) -> list:
        return [(0, np.r_[1.0, 2]), (1, np.r_[10.0, 20, 30]), (4, np.r_[-1.0])]

    @pytest.mark.parametrize("xp", [np, da])
    def test_spmm(self, A, xp):
        x = np.random.default_rng(0).normal(size=(3, 6))
        y = pplb.spmm(A, xp.asarray(x))
        assert isinstance(y, np.ndarray if xp is np else da.Array)
        assert y.shape == (3, 4)
        assert np.allclose(ppu.compute(y), x @ A.toarray().T)

    def test_spmm_dask_multi_chunk(self, A):
        x = np.random.default_rng(1).normal(size=(2, 6))
        y = pplb.spmm(A, da.from_array(x, chunks=(1, 2)))  # core dimension split over chunks
        assert np.allclose(y.compute(), x @ A.toarray().T)

    @pytest.mark.parametrize("xp", [np, da])
    def test_accumulate(self, parts, xp):
        arr = xp.zeros(3)
        out = ppll._accumulate(arr, [(k, xp.asarray(y)) for k, y in parts], size=5)
        assert isinstance(out, np.ndarray if xp is np else da.Array)
        assert np.allclose(ppu.compute(out), np.r_[1, 12, 20, 30, -1])

    def test_accumulate_batched(self, parts):
        arr = da.zeros((2, 3))
        out = ppll._accumulate(arr, [(k, da.from_array(np.stack([y, 2 * y]))) for k, y in parts], size=5)
        assert np.allclose(out.compute(), np.outer([1, 2], np.r_[1, 12, 20, 30, -1]))

    def test_invalid_signature(self):
        with pytest.raises(ValueError):
            ppll._accumulate(z=1)

    def test_nonArray_input(self, parts):
        with pytest.raises(ValueError):
            ppll._accumulate(arr=1, parts=parts, size=5)


class TestCompute:
    def test_single(self):
        x = da.arange(5)
        y = ppu.compute(x)
        assert isinstance(y, np.ndarray)
        assert np.allclose(y, np.arange(5))

    def test_multiple(self):
        x, y = ppu.compute(da.ones(2), np.zeros(3))
        assert isinstance(x, np.ndarray)
        assert y.shape == (3,)

    def test_persist(self):
        x = ppu.compute(da.ones(2), mode="persist")
        assert isinstance(x, da.Array)

    def test_invalid_mode(self):
        with pytest.raises(ValueError):
            ppu.compute(da.ones(2), mode="eager")


class TestToNumPy:
    def test_backend(self, xp):
        x = xp.arange(4)
        y = ppu.to_NUMPY(x)
        assert isinstance(y, np.ndarray)
        assert np.allclose(y, np.arange(4))


class TestParseParams:
    def test_defaults_filled(self):
        def f(a, b=2, *, c=3):
            pass

        assert ppu.parse_params(f, 1, c=4) == dict(a=1, b=2, c=4)

    def test_var_keyword_flattened(self):
        def f(a, **kwargs):
            pass

        assert ppu.parse_params(f, a=1, z=5) == dict(a=1, z=5)

    def test_invalid_call(self):
        def f(a):
            pass

        with pytest.raises(TypeError):
            ppu.parse_params(f, 1, 2)
