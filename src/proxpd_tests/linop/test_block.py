import numpy as np
import pytest
import scipy.sparse as sp

import proxpd.info.error as ppe
import proxpd.linop as ppl
import proxpd.runtime as pprt
import proxpd_tests.conftest as ct

M = np.array([[1.0, -2, 0], [0, 3, 0.5]])


def block_cases():
    return [
        [ppl.ZeroBlock(0, 0, 2, 3), np.zeros((2, 3))],
        [ppl.IdentityBlock(0, 0, 3, scale=-2), -2 * np.eye(3)],
        [ppl.DenseBlock(0, 0, M), M],
        [ppl.SparseBlock(0, 0, sp.coo_matrix(M)), M],
        [ppl.DiagsBlock(0, 0, 2, 3, [-1, 1], [0, 1]), np.array([[-1.0, 1, 0], [0, -1, 1]])],
    ]


class TestBlockArithmetic:
    @pytest.fixture(params=block_cases())
    def case(self, request):
        return request.param

    def test_apply(self, case, ctx):
        blk, A = case
        x = np.arange(2 * A.shape[1]).reshape(2, -1) - 1.5
        with pprt.Precision(ctx.width):
            blk.initialize(ctx)
            y = blk.apply(ctx.asarray(x))
        assert y.shape == (2, A.shape[0])
        assert ct.allclose(y, x @ A.T, ctx.dtype)

    def test_adjoint(self, case, ctx):
        blk, A = case
        x = np.linspace(-1, 1, A.shape[0])
        with pprt.Precision(ctx.width):
            blk.initialize(ctx)
            y = blk.adjoint(ctx.asarray(x))
        assert ct.allclose(y, A.T @ x, ctx.dtype)

    @pytest.mark.parametrize("power", [0, 1, 2, 0.5])
    def test_sums(self, case, power):
        blk, A = case
        B = np.where(A != 0, np.abs(A) ** power, 0)
        assert np.allclose(blk.row_sums(power), B.sum(axis=1))
        assert np.allclose(blk.col_sums(power), B.sum(axis=0))
        assert np.isclose(blk.row_sum(0, power), B[0].sum())
        assert np.isclose(blk.col_sum(1, power), B[:, 1].sum())


class TestBlockConstruction:
    @pytest.mark.parametrize(
        "args",
        [
            (-1, 0, 2, 2),
            (0, -1, 2, 2),
            (0, 0, 0, 2),
            (0, 0, 2, 1.5),
        ],
    )
    def test_invalid_geometry(self, args):
        with pytest.raises(ppe.InvalidParameter):
            ppl.ZeroBlock(*args)

    def test_dense_requires_matrix(self):
        with pytest.raises(ppe.InvalidParameter):
            ppl.DenseBlock(0, 0, np.ones(3))

    def test_sparse_requires_sparse(self):
        with pytest.raises(ppe.InvalidParameter):
            ppl.SparseBlock(0, 0, np.ones((2, 2)))

    def test_sparse_drops_explicit_zeros(self):
        A = sp.csr_matrix((np.r_[0.0, 2], (np.r_[0, 1], np.r_[0, 1])), shape=(2, 2))
        blk = ppl.SparseBlock(0, 0, A)
        assert blk.mat.nnz == 1
        assert np.allclose(blk.row_sums(0), [0, 1])

    @pytest.mark.parametrize(
        "diagonals, offsets",
        [
            ([np.ones(5)], [0]),  # longer than the main diagonal
            ([np.ones(1), np.ones(3)], [0, 1]),  # longer than the 1st super-diagonal
            (np.ones(3), -1),  # flat diagonal, too long
            ([1, 1], [0]),  # diagonals/offsets count
            ([1], [3]),  # offset outside the block
        ],
    )
    def test_diags_mismatch(self, diagonals, offsets):
        with pytest.raises(ppe.InvalidParameter):
            ppl.DiagsBlock(0, 0, 2, 3, diagonals, offsets)

    def test_diags_exact_length(self):
        blk = ppl.DiagsBlock(0, 0, 2, 3, [np.r_[1.0, 2], np.r_[3.0, 4]], [0, 1])
        assert np.allclose(blk.mat.toarray(), [[1, 3, 0], [0, 2, 4]])
        blk = ppl.DiagsBlock(0, 0, 3, 2, np.r_[5.0, 6], -1)
        assert np.allclose(blk.mat.toarray(), [[0, 0], [5, 0], [0, 6]])

    def test_identity_scale(self):
        with pytest.raises(ppe.InvalidParameter):
            ppl.IdentityBlock(0, 0, 3, scale=np.ones(3))

    def test_geometry(self):
        blk = ppl.DenseBlock(4, 1, M)
        assert (blk.row, blk.col, blk.nrows, blk.ncols) == (4, 1, 2, 3)
        assert blk.shape == (2, 3)


class TestGradient2DBlock:
    @staticmethod
    def gradient(u):
        # u: (L, ny, nx) -> (2, L, ny, nx), forward differences with Neumann boundary.
        dx = np.zeros_like(u)
        dy = np.zeros_like(u)
        dx[..., :, :-1] = u[..., :, 1:] - u[..., :, :-1]
        dy[..., :-1, :] = u[..., 1:, :] - u[..., :-1, :]
        return np.stack([dx, dy])

    @pytest.mark.parametrize(["nx", "ny", "L"], [(3, 2, 1), (4, 5, 2), (2, 3, 1)])
    def test_apply(self, nx, ny, L):
        blk = ppl.Gradient2DBlock(0, 0, nx=nx, ny=ny, channels=L)
        assert blk.shape == (2 * L * ny * nx, L * ny * nx)
        assert blk.grid == (nx, ny, L)

        rng = np.random.default_rng(0)
        u = rng.standard_normal((L, ny, nx))
        blk.initialize(pprt.Context())
        y = blk.apply(u.reshape(-1))
        assert np.allclose(y, self.gradient(u).reshape(-1))

    def test_adjoint(self):
        blk = ppl.Gradient2DBlock(0, 0, nx=4, ny=3).initialize(pprt.Context())
        rng = np.random.default_rng(1)
        x, p = rng.standard_normal(12), rng.standard_normal(24)
        assert np.isclose(np.dot(blk.apply(x), p), np.dot(x, blk.adjoint(p)))

    def test_constant_image(self):
        blk = ppl.Gradient2DBlock(0, 0, nx=4, ny=3).initialize(pprt.Context())
        assert np.allclose(blk.apply(np.full(12, 7.0)), 0)

    def test_sums(self):
        blk = ppl.Gradient2DBlock(0, 0, nx=3, ny=2)
        # x-rows: interior rows hold (-1, 1), boundary rows are empty.
        assert np.allclose(blk.row_sums(1)[:6], [2, 2, 0, 2, 2, 0])
        assert np.allclose(blk.row_sums(1)[6:], [2, 2, 2, 0, 0, 0])

    def test_invalid(self):
        with pytest.raises(ppe.InvalidParameter):
            ppl.Gradient2DBlock(0, 0, nx=0, ny=2)
