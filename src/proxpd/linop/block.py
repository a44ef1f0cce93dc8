import functools

import numpy as np
import scipy.sparse as sp

import proxpd.abc as ppa
import proxpd.info.deps as ppd
import proxpd.info.error as ppe
import proxpd.info.ptype as ppt
import proxpd.runtime as pprt
import proxpd.util as ppu

__all__ = [
    "ZeroBlock",
    "IdentityBlock",
    "DenseBlock",
    "SparseBlock",
    "DiagsBlock",
    "Gradient2DBlock",
]


def _abs_pow(data: np.ndarray, power: ppt.Real) -> np.ndarray:
    # |data|^power, where zero entries contribute 0 for all powers.
    a = np.abs(data)
    return np.where(a > 0, a**power, 0)


def _spmm_nd(A: ppt.SparseArray, arr: ppt.NDArray) -> ppt.NDArray:
    # (M, N) sparse @ (..., N) dense -> (..., M)
    sh, N = arr.shape[:-1], arr.shape[-1]
    y = A.dot(arr.reshape(-1, N).T).T
    return y.reshape(*sh, A.shape[0])


def _spmm_dask(A: ppt.SparseArray, arr: ppt.NDArray) -> ppt.NDArray:
    arr = arr.rechunk({arr.ndim - 1: -1})  # core dimension must fit in one chunk.
    return arr.map_blocks(
        functools.partial(_spmm_nd, A),
        chunks=(*arr.chunks[:-1], (A.shape[0],)),
        dtype=arr.dtype,
        meta=np.array((), dtype=arr.dtype),
    )


spmm = ppu.redirect("arr", DASK=_spmm_dask)(_spmm_nd)


class ZeroBlock(ppa.Block):
    """
    All-zero block.  Useful to enlarge the extent of a linear operator.
    """

    def apply(self, arr: ppt.NDArray) -> ppt.NDArray:
        xp = ppu.get_array_module(arr)
        return xp.zeros((*arr.shape[:-1], self._nrows), dtype=arr.dtype)

    def adjoint(self, arr: ppt.NDArray) -> ppt.NDArray:
        xp = ppu.get_array_module(arr)
        return xp.zeros((*arr.shape[:-1], self._ncols), dtype=arr.dtype)

    def row_sums(self, power: ppt.Real) -> ppt.NDArray:
        return np.zeros(self._nrows)

    def col_sums(self, power: ppt.Real) -> ppt.NDArray:
        return np.zeros(self._ncols)


class IdentityBlock(ppa.Block):
    r"""
    Scaled identity :math:`s \mathbf{I}_{n}`.
    """

    def __init__(
        self,
        row: ppt.Integer,
        col: ppt.Integer,
        size: ppt.Integer,
        scale: ppt.Real = 1,
    ):
        super().__init__(row=row, col=col, nrows=size, ncols=size)
        try:
            assert isinstance(scale, ppt.Real)
            self._scale = float(scale)
        except Exception:
            raise ppe.InvalidParameter(f"scale: expected real scalar, got {scale}.")

    @property
    def scale(self) -> ppt.Real:
        return self._scale

    def apply(self, arr: ppt.NDArray) -> ppt.NDArray:
        return self._scale * arr

    def adjoint(self, arr: ppt.NDArray) -> ppt.NDArray:
        return self._scale * arr

    def row_sums(self, power: ppt.Real) -> ppt.NDArray:
        return np.full(self._nrows, _abs_pow(np.r_[self._scale], power)[0])

    def col_sums(self, power: ppt.Real) -> ppt.NDArray:
        return self.row_sums(power)


class DenseBlock(ppa.Block):
    """
    Block stored as a dense (nrows, ncols) matrix.
    """

    def __init__(self, row: ppt.Integer, col: ppt.Integer, mat: ppt.NDArray):
        try:
            mat = ppu.to_NUMPY(mat)
        except ValueError:
            mat = np.asarray(mat)
        if mat.ndim != 2:
            raise ppe.InvalidParameter(f"mat: expected 2D matrix, got shape {mat.shape}.")
        super().__init__(row=row, col=col, nrows=mat.shape[0], ncols=mat.shape[1])
        self._mat = mat  # host copy
        self._A = mat

    def _init(self, ctx: pprt.Context):
        if ctx.backend == ppd.NDArrayInfo.CUPY:
            self._A = ctx.asarray(self._mat)
        else:  # NUMPY/DASK inputs both consume NUMPY matrices.
            self._A = self._mat.astype(ctx.dtype, copy=False)

    def apply(self, arr: ppt.NDArray) -> ppt.NDArray:
        return arr @ self._A.T

    def adjoint(self, arr: ppt.NDArray) -> ppt.NDArray:
        return arr @ self._A

    def row_sums(self, power: ppt.Real) -> ppt.NDArray:
        return _abs_pow(self._mat, power).sum(axis=1)

    def col_sums(self, power: ppt.Real) -> ppt.NDArray:
        return _abs_pow(self._mat, power).sum(axis=0)


class SparseBlock(ppa.Block):
    """
    Block stored as a sparse matrix.

    Any :py:mod:`scipy.sparse` matrix/array is accepted: it is stored in CSR format.  Under a CUPY context the matrix is
    moved to the GPU via :py:mod:`cupyx.scipy.sparse`.
    """

    def __init__(self, row: ppt.Integer, col: ppt.Integer, mat: ppt.SparseArray):
        try:
            assert sp.issparse(mat)
            mat = sp.csr_matrix(mat)
        except Exception:
            raise ppe.InvalidParameter(f"mat: expected scipy.sparse matrix, got {type(mat)}.")
        super().__init__(row=row, col=col, nrows=mat.shape[0], ncols=mat.shape[1])
        mat.eliminate_zeros()
        self._mat = mat  # host copy
        self._A = self._At = None

    def _init(self, ctx: pprt.Context):
        A = self._mat.astype(ctx.dtype)
        At = A.T.tocsr()
        if ctx.backend == ppd.NDArrayInfo.CUPY:
            csr = ppd.SparseArrayInfo.CUPY_SPARSE.module().csr_matrix
            A, At = csr(A), csr(At)
        self._A, self._At = A, At

    def release(self):
        self._A = self._At = None
        super().release()

    @property
    def mat(self) -> sp.csr_matrix:
        return self._mat

    def apply(self, arr: ppt.NDArray) -> ppt.NDArray:
        return spmm(self._A, arr)

    def adjoint(self, arr: ppt.NDArray) -> ppt.NDArray:
        return spmm(self._At, arr)

    def _abs_pow(self, power: ppt.Real) -> sp.csr_matrix:
        B = self._mat.copy()
        B.data = _abs_pow(B.data, power)
        return B

    def row_sums(self, power: ppt.Real) -> ppt.NDArray:
        return np.asarray(self._abs_pow(power).sum(axis=1)).reshape(-1)

    def col_sums(self, power: ppt.Real) -> ppt.NDArray:
        return np.asarray(self._abs_pow(power).sum(axis=0)).reshape(-1)


class DiagsBlock(SparseBlock):
    """
    Banded block, with the semantics of :py:func:`scipy.sparse.diags`.

    Example
    -------
    .. code-block:: python3

       import proxpd.linop as ppl

       # 1D forward differences on 5 samples.
       D = ppl.DiagsBlock(0, 0, 4, 5, diagonals=[-1, 1], offsets=[0, 1])
    """

    def __init__(
        self,
        row: ppt.Integer,
        col: ppt.Integer,
        nrows: ppt.Integer,
        ncols: ppt.Integer,
        diagonals,
        offsets=0,
    ):
        offsets_ = np.atleast_1d(offsets)
        single = (np.ndim(offsets) == 0) and (np.ndim(diagonals) <= 1)  # one diagonal, given flat
        diagonals_ = [diagonals] if single else list(diagonals)
        if len(diagonals_) != len(offsets_):
            raise ppe.InvalidParameter(f"Got {len(diagonals_)} diagonals for {len(offsets_)} offsets.")
        for d, k in zip(diagonals_, offsets_):
            n = min(nrows + min(k, 0), ncols - max(k, 0))  # length of diagonal k
            if (n <= 0) or (np.size(d) not in (1, n)):
                raise ppe.InvalidParameter(
                    f"Diagonal at offset {k}: expected scalar or length-{max(n, 0)} vector, got size {np.size(d)}."
                )

        try:
            mat = sp.diags(diagonals, offsets, shape=(nrows, ncols), format="csr")
        except Exception as e:
            raise ppe.InvalidParameter(f"(diagonals, offsets) incompatible with shape ({nrows}, {ncols}).") from e
        super().__init__(row=row, col=col, mat=mat)


def _forward_diff(n: int) -> sp.csr_matrix:
    # (n, n) forward differences, Neumann boundary: last row is zero.
    D = sp.diags([-np.ones(n), np.ones(n - 1)], [0, 1], shape=(n, n), format="lil")
    D[n - 1, n - 1] = 0
    return D.tocsr()


class Gradient2DBlock(SparseBlock):
    r"""
    Forward-difference gradient on an (ny, nx) grid with `channels` channels and Neumann boundary conditions.

    Inputs are (channels, ny, nx) images flattened in C-order.  Outputs hold all x-derivatives followed by all
    y-derivatives, i.e. (2, channels, ny, nx) flattened in C-order: this is the planar layout expected by
    :py:class:`~proxpd.prox.ProxNorm2` with ``dim=2``.
    """

    def __init__(
        self,
        row: ppt.Integer,
        col: ppt.Integer,
        nx: ppt.Integer,
        ny: ppt.Integer,
        channels: ppt.Integer = 1,
    ):
        try:
            for v in (nx, ny, channels):
                assert int(v) == v and v >= 1
        except Exception:
            raise ppe.InvalidParameter(f"(nx, ny, channels): expected positive integers, got {(nx, ny, channels)}.")
        nx, ny, L = int(nx), int(ny), int(channels)

        I_L = sp.identity(L, format="csr")
        Gx = sp.kron(sp.identity(ny), _forward_diff(nx))
        Gy = sp.kron(_forward_diff(ny), sp.identity(nx))
        mat = sp.vstack([sp.kron(I_L, Gx), sp.kron(I_L, Gy)], format="csr")
        super().__init__(row=row, col=col, mat=mat)
        self._grid = (nx, ny, L)

    @property
    def grid(self) -> tuple[int, int, int]:
        """
        (nx, ny, channels)
        """
        return self._grid
