import collections.abc as cabc
import typing as typ

import proxpd.abc as ppa
import proxpd.factory as ppf
import proxpd.info.ptype as ppt
import proxpd.linop as ppl
import proxpd.prox as ppx
import proxpd.runtime as pprt

__all__ = [
    "Problem",
]

ProxSet = typ.Union[ppx.ProxSeparable, cabc.Sequence[ppa.ProxOp]]


class Problem:
    r"""
    Saddle-point problem :math:`\min_{\mathbf{x}} \max_{\mathbf{y}} \langle \mathbf{K} \mathbf{x}, \mathbf{y}
    \rangle + g(\mathbf{x}) - f^{\ast}(\mathbf{y})`.

    :math:`g` and :math:`f^{\ast}` are given as partitions of ``[0, ncols)`` and ``[0, nrows)`` respectively.
    """

    def __init__(
        self,
        linop: ppl.LinearOperator,
        g: ProxSet,
        fstar: ProxSet,
    ):
        r"""
        Parameters
        ----------
        linop: LinearOperator
            Linear operator :math:`\mathbf{K}`.
        g: ProxSeparable, ~collections.abc.Sequence[ProxOp]
            Proximal operators of :math:`g`.
        fstar: ProxSeparable, ~collections.abc.Sequence[ProxOp]
            Proximal operators of :math:`f^{\ast}`.

        Raises
        ------
        InvalidParameter
            If `g` (resp. `fstar`) does not partition the columns (resp. rows) of `linop`.
        """
        self._linop = linop
        M, N = linop.shape
        self._g = self._as_separable(g, N)
        self._fstar = self._as_separable(fstar, M)

    @staticmethod
    def _as_separable(ops: ProxSet, size: ppt.Integer) -> ppx.ProxSeparable:
        if isinstance(ops, ppx.ProxSeparable):
            ops = ops.ops
        elif isinstance(ops, ppa.ProxOp):
            ops = [ops]
        return ppx.ProxSeparable(ops, size=size)

    @classmethod
    def from_spec(
        cls,
        blocks: cabc.Iterable,
        g: cabc.Iterable,
        fstar: cabc.Iterable,
        nrows: ppt.Integer = None,
        ncols: ppt.Integer = None,
    ) -> "Problem":
        """
        Build a problem from descriptors.  (See :py:mod:`proxpd.factory`.)

        Parameters
        ----------
        blocks: ~collections.abc.Iterable
            Block descriptors.
        g, fstar: ~collections.abc.Iterable
            Prox descriptors.
        nrows, ncols: Integer
            Minimum operator extents.
        """
        K = ppl.LinearOperator(
            blocks=[ppf.make_block(b) for b in blocks],
            nrows=nrows,
            ncols=ncols,
        )
        return cls(
            linop=K,
            g=[ppf.make_prox(p) for p in g],
            fstar=[ppf.make_prox(p) for p in fstar],
        )

    @property
    def linop(self) -> ppl.LinearOperator:
        return self._linop

    @property
    def g(self) -> ppx.ProxSeparable:
        return self._g

    @property
    def fstar(self) -> ppx.ProxSeparable:
        return self._fstar

    @property
    def shape(self) -> tuple[int, int]:
        return self._linop.shape

    def initialize(self, ctx: pprt.Context = None) -> "Problem":
        if ctx is None:
            ctx = pprt.Context()
        self._linop.initialize(ctx)
        self._g.initialize(ctx)
        self._fstar.initialize(ctx)
        return self

    def release(self):
        self._linop.release()
        self._g.release()
        self._fstar.release()

    def __repr__(self) -> str:
        return f"Problem(shape={self.shape}, g={self._g!r}, fstar={self._fstar!r})"
