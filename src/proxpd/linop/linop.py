import collections.abc as cabc
import functools

import numpy as np
import scipy.linalg as splin
import scipy.sparse.linalg as spsl

import proxpd.abc as ppa
import proxpd.info.deps as ppd
import proxpd.info.error as ppe
import proxpd.info.ptype as ppt
import proxpd.runtime as pprt
import proxpd.util as ppu

__all__ = [
    "LinearOperator",
]


def _parallelize(func: cabc.Callable) -> cabc.Callable:
    # Parallelize execution of func() under conditions.
    #
    # * func() must be one of the arithmetic methods [apply,adjoint]()
    # * the context attached to the instance must request parallel evaluation.
    #
    # Only NUMPY inputs are parallelized: blocks evaluated on DASK inputs are already concurrent, and CUPY inputs would
    # induce CPU<>GPU transfers.

    @functools.wraps(func)
    def wrapper(*ARGS, **KWARGS):
        func_args = ppu.parse_params(func, *ARGS, **KWARGS)

        arr = func_args.get("arr", None)
        N = ppd.NDArrayInfo
        ctx = ARGS[0]._ctx
        parallelize = (ctx is not None) and ctx.parallel and (N.from_obj(arr) == N.NUMPY)

        if parallelize:
            xp = N.DASK.module()
            func_args.update(arr=xp.array(arr, dtype=arr.dtype))

        out = func(**func_args)
        f = {True: ppu.compute, False: lambda _: _}[parallelize]
        return f(out)

    return wrapper


def _accumulate_dask(
    arr: ppt.NDArray,
    parts: list[tuple[int, ppt.NDArray]],
    size: ppt.Integer,
) -> ppt.NDArray:
    # DASK arrays do not support in-place updates: zero-pad contributions, then reduce.
    xp = ppu.get_array_module(arr)
    padded = []
    for offset, y in parts:
        pad = [(0, 0)] * (y.ndim - 1) + [(offset, size - offset - y.shape[-1])]
        padded.append(xp.pad(y, pad))
    return functools.reduce(lambda a, b: a + b, padded)


@ppu.redirect("arr", DASK=_accumulate_dask)
def _accumulate(
    arr: ppt.NDArray,
    parts: list[tuple[int, ppt.NDArray]],
    size: ppt.Integer,
) -> ppt.NDArray:
    # Sum block contributions `parts` (offset, (..., n) array) into a zero-initialised (..., size) array.
    xp = ppu.get_array_module(arr)
    out = xp.zeros((*arr.shape[:-1], size), dtype=arr.dtype)
    for offset, y in parts:
        out[..., offset : offset + y.shape[-1]] += y
    return out


class LinearOperator:
    r"""
    Block-structured linear operator :math:`\mathbf{K} \in \mathbb{R}^{M \times N}`.

    :math:`\mathbf{K}` is the sum of :py:class:`~proxpd.abc.Block` instances, each placed at some ``(row, col)``
    offset.  Blocks may overlap: contributions to shared rows (resp. columns) are summed in
    :py:meth:`~proxpd.linop.LinearOperator.apply` (resp. :py:meth:`~proxpd.linop.LinearOperator.adjoint`).

    Life-cycle: blocks are added, then :py:meth:`~proxpd.linop.LinearOperator.initialize` freezes the geometry and
    caches absolute row/column sums.  The operator is read-only afterwards.

    Example
    -------
    .. code-block:: python3

       import numpy as np
       import proxpd.linop as ppl

       K = ppl.LinearOperator()
       K.add_block(ppl.IdentityBlock(0, 0, size=3))
       K.add_block(ppl.DenseBlock(0, 3, np.ones((3, 2))))
       K.initialize()

       K.apply(np.arange(5.0))  # [7, 8, 9]
    """

    def __init__(
        self,
        blocks: cabc.Iterable[ppa.Block] = (),
        nrows: ppt.Integer = None,
        ncols: ppt.Integer = None,
    ):
        """
        Parameters
        ----------
        blocks: ~collections.abc.Iterable[Block]
            Initial blocks.
        nrows, ncols: Integer
            Minimum operator extents.  Actual extents are the union of block extents, enlarged to these hints if
            provided.
        """
        self._blocks = []
        self._hint = (nrows, ncols)
        self._shape = None
        self._ctx = None
        self._sums = dict()
        for blk in blocks:
            self.add_block(blk)

    def add_block(self, block: ppa.Block) -> "LinearOperator":
        if self.initialized:
            raise ppe.InvalidParameter("Cannot add blocks to an initialized LinearOperator.")
        if not isinstance(block, ppa.Block):
            raise ppe.InvalidParameter(f"block: expected Block, got {type(block)}.")
        self._blocks.append(block)
        return self

    @property
    def blocks(self) -> tuple[ppa.Block]:
        return tuple(self._blocks)

    @property
    def initialized(self) -> bool:
        return self._ctx is not None

    @property
    def ctx(self) -> pprt.Context:
        return self._ctx

    @property
    def shape(self) -> tuple[int, int]:
        """
        (nrows, ncols) extents of the operator.
        """
        if self._shape is not None:
            return self._shape

        M, N = [0 if (h is None) else int(h) for h in self._hint]
        for blk in self._blocks:
            M = max(M, blk.row + blk.nrows)
            N = max(N, blk.col + blk.ncols)
        return (M, N)

    @property
    def nrows(self) -> ppt.Integer:
        return self.shape[0]

    @property
    def ncols(self) -> ppt.Integer:
        return self.shape[1]

    def initialize(self, ctx: pprt.Context = None) -> "LinearOperator":
        """
        Freeze the operator geometry and prepare blocks for evaluation.

        Raises
        ------
        InvalidParameter
            If the operator has zero extent.
        """
        if ctx is None:
            ctx = pprt.Context()
        M, N = self.shape
        if (M == 0) or (N == 0):
            raise ppe.InvalidParameter(f"LinearOperator: degenerate shape {(M, N)}.")

        for blk in self._blocks:
            blk.initialize(ctx)
        self._shape = (M, N)
        self._ctx = ctx
        self._sums.clear()
        self.row_sums(1)
        self.col_sums(1)
        return self

    def release(self):
        for blk in self._blocks:
            blk.release()
        self._ctx = None
        self._shape = None
        self._sums.clear()

    def _check_init(self):
        if not self.initialized:
            raise ppe.NotInitialized("LinearOperator: call initialize() first.")

    @_parallelize
    @pprt.enforce_precision(i="arr")
    def apply(self, arr: ppt.NDArray) -> ppt.NDArray:
        r"""
        Evaluate :math:`\mathbf{K} \mathbf{x}`.

        Parameters
        ----------
        arr: NDArray
            (..., ncols) inputs.

        Returns
        -------
        out: NDArray
            (..., nrows) outputs.
        """
        self._check_init()
        ppu.check_size(arr, self.ncols, name="arr")
        parts = []
        for blk in self._blocks:
            y = blk.apply(arr[..., blk.col : blk.col + blk.ncols])
            parts.append((blk.row, y))
        return _accumulate(arr, parts, self.nrows)

    def __call__(self, arr: ppt.NDArray) -> ppt.NDArray:
        return self.apply(arr)

    @_parallelize
    @pprt.enforce_precision(i="arr")
    def adjoint(self, arr: ppt.NDArray) -> ppt.NDArray:
        r"""
        Evaluate :math:`\mathbf{K}^{\top} \mathbf{y}`.

        Parameters
        ----------
        arr: NDArray
            (..., nrows) inputs.

        Returns
        -------
        out: NDArray
            (..., ncols) outputs.
        """
        self._check_init()
        ppu.check_size(arr, self.nrows, name="arr")
        parts = []
        for blk in self._blocks:
            y = blk.adjoint(arr[..., blk.row : blk.row + blk.nrows])
            parts.append((blk.col, y))
        return _accumulate(arr, parts, self.ncols)

    def row_sums(self, power: ppt.Real = 1) -> ppt.NDArray:
        r"""
        Absolute row sums :math:`\sum_{b} \sum_{j} |B_{ij}|^{p}`, accumulated block by block over non-zero entries.

        Entries of overlapping blocks contribute separately: the sums are those of the blocks, not of their sum
        :math:`\mathbf{K}`.

        Returns
        -------
        s: NDArray
            (nrows,) NUMPY array.  Results are cached per `power` until :py:meth:`~proxpd.linop.LinearOperator.release`.
        """
        return self._cached_sums("row", power)

    def col_sums(self, power: ppt.Real = 1) -> ppt.NDArray:
        r"""
        Absolute column sums :math:`\sum_{b} \sum_{i} |B_{ij}|^{p}`, accumulated block by block over non-zero entries.

        See :py:meth:`~proxpd.linop.LinearOperator.row_sums` for overlapping blocks.

        Returns
        -------
        s: NDArray
            (ncols,) NUMPY array.  Results are cached per `power` until :py:meth:`~proxpd.linop.LinearOperator.release`.
        """
        return self._cached_sums("col", power)

    def _cached_sums(self, axis: str, power: ppt.Real) -> ppt.NDArray:
        self._check_init()
        key = (axis, float(power))
        if key not in self._sums:
            if axis == "row":
                s = np.zeros(self.nrows)
                for blk in self._blocks:
                    s[blk.row : blk.row + blk.nrows] += blk.row_sums(power)
            else:
                s = np.zeros(self.ncols)
                for blk in self._blocks:
                    s[blk.col : blk.col + blk.ncols] += blk.col_sums(power)
            self._sums[key] = ppu.read_only(s)
        return self._sums[key]

    def row_sum(self, row: ppt.Integer, power: ppt.Real = 1) -> ppt.Real:
        """
        Absolute sum of row `row`, accumulated over the blocks which contain it.
        """
        self._check_init()
        if not (0 <= row < self.nrows):
            raise ppe.InvalidParameter(f"row: expected index in [0, {self.nrows}), got {row}.")
        s = 0.0
        for blk in self._blocks:
            if blk.row <= row < blk.row + blk.nrows:
                s += blk.row_sum(row - blk.row, power)
        return s

    def col_sum(self, col: ppt.Integer, power: ppt.Real = 1) -> ppt.Real:
        """
        Absolute sum of column `col`, accumulated over the blocks which contain it.
        """
        self._check_init()
        if not (0 <= col < self.ncols):
            raise ppe.InvalidParameter(f"col: expected index in [0, {self.ncols}), got {col}.")
        s = 0.0
        for blk in self._blocks:
            if blk.col <= col < blk.col + blk.ncols:
                s += blk.col_sum(col - blk.col, power)
        return s

    def asarray(self) -> ppt.NDArray:
        """
        Dense (nrows, ncols) NUMPY representation of the operator.
        """
        self._check_init()
        E = self._ctx.asarray(np.eye(self.ncols))
        with pprt.EnforcePrecision(False):
            A = ppu.to_NUMPY(self.apply(E)).T
        return A

    def estimate_norm(self, **kwargs) -> ppt.Real:
        r"""
        Estimate the spectral norm :math:`\Vert \mathbf{K} \Vert_{2}`.

        Parameters
        ----------
        kwargs
            Optional kwargs passed on to :py:func:`scipy.sparse.linalg.svds`.

        Notes
        -----
        Operators with ``min(shape) <= 2`` are treated as dense matrices since
        :py:func:`scipy.sparse.linalg.svds` cannot handle them.

        Lanczos estimates approach the largest singular value from below.  The iterative estimate is therefore scaled
        by ``(1 + tol)``, the relative accuracy requested from :py:func:`~scipy.sparse.linalg.svds`, so that step sizes
        ``1 / norm`` stay admissible.  (Default ``tol``: 1e-6, or 10 machine epsilons at single precision.)
        """
        self._check_init()
        if min(self.shape) <= 2:
            D = splin.svd(self.asarray(), compute_uv=False)
        else:
            ctx = self._ctx
            dtype = ctx.dtype
            op = spsl.LinearOperator(
                shape=self.shape,
                matvec=lambda v: ppu.to_NUMPY(self.apply(ctx.asarray(v.reshape(-1)))),
                rmatvec=lambda v: ppu.to_NUMPY(self.adjoint(ctx.asarray(v.reshape(-1)))),
                dtype=dtype,
            )
            kwargs.update(
                k=1,
                which="LM",
                return_singular_vectors=False,
            )
            kwargs.setdefault("tol", max(1e-6, 10 * np.finfo(dtype).eps))
            kwargs.setdefault("random_state", 0)
            D = spsl.svds(op, **kwargs) * (1 + kwargs["tol"])
        return float(np.max(D))

    def __repr__(self) -> str:
        return f"LinearOperator(shape={self.shape}, blocks={self._blocks})"
