import proxpd.info.error as ppe
import proxpd.info.ptype as ppt
import proxpd.runtime as pprt

__all__ = [
    "Block",
]


class Block:
    r"""
    Sub-matrix :math:`\mathbf{K}_{b} \in \mathbb{R}^{M_{b} \times N_{b}}` of a
    :py:class:`~proxpd.linop.LinearOperator`, placed at ``(row, col)``.

    Sub-classes implement block-local arithmetic: :py:meth:`~proxpd.abc.Block.apply` maps (..., ncols) inputs to
    (..., nrows) outputs, :py:meth:`~proxpd.abc.Block.adjoint` the converse.  Absolute row/column sums are computed on
    the host and returned as NUMPY arrays.
    """

    def __init__(
        self,
        row: ppt.Integer,
        col: ppt.Integer,
        nrows: ppt.Integer,
        ncols: ppt.Integer,
    ):
        try:
            for v in (row, col, nrows, ncols):
                assert int(v) == v
            assert (row >= 0) and (col >= 0)
            assert (nrows >= 1) and (ncols >= 1)
        except Exception:
            msg = f"(row, col, nrows, ncols): expected (>=0, >=0, >=1, >=1) integers, got {(row, col, nrows, ncols)}."
            raise ppe.InvalidParameter(msg)
        self._row = int(row)
        self._col = int(col)
        self._nrows = int(nrows)
        self._ncols = int(ncols)
        self._ctx = None

    @property
    def row(self) -> ppt.Integer:
        return self._row

    @property
    def col(self) -> ppt.Integer:
        return self._col

    @property
    def nrows(self) -> ppt.Integer:
        return self._nrows

    @property
    def ncols(self) -> ppt.Integer:
        return self._ncols

    @property
    def shape(self) -> tuple[int, int]:
        return (self._nrows, self._ncols)

    def initialize(self, ctx: pprt.Context) -> "Block":
        self._init(ctx)
        self._ctx = ctx
        return self

    def _init(self, ctx: pprt.Context):
        pass

    def release(self):
        self._ctx = None

    def apply(self, arr: ppt.NDArray) -> ppt.NDArray:
        """
        (..., ncols) -> (..., nrows)
        """
        raise NotImplementedError

    def adjoint(self, arr: ppt.NDArray) -> ppt.NDArray:
        """
        (..., nrows) -> (..., ncols)
        """
        raise NotImplementedError

    def row_sums(self, power: ppt.Real) -> ppt.NDArray:
        r"""
        Returns
        -------
        s: NDArray
            (nrows,) NUMPY array :math:`\sum_{j} |K_{ij}|^{p}`, summed over non-zero entries only.
        """
        raise NotImplementedError

    def col_sums(self, power: ppt.Real) -> ppt.NDArray:
        r"""
        Returns
        -------
        s: NDArray
            (ncols,) NUMPY array :math:`\sum_{i} |K_{ij}|^{p}`, summed over non-zero entries only.
        """
        raise NotImplementedError

    def row_sum(self, row: ppt.Integer, power: ppt.Real) -> ppt.Real:
        """
        Block-local absolute row sum.
        """
        return float(self.row_sums(power)[row])

    def col_sum(self, col: ppt.Integer, power: ppt.Real) -> ppt.Real:
        """
        Block-local absolute column sum.
        """
        return float(self.col_sums(power)[col])

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(row={self._row}, col={self._col}, shape={self.shape})"
