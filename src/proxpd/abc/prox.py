import typing as typ

import proxpd.info.error as ppe
import proxpd.info.ptype as ppt
import proxpd.runtime as pprt
import proxpd.util as ppu

__all__ = [
    "ProxOp",
]

#: Coordinate group ``(index, count, stride)`` whose members must share a step size.
SepGroup = tuple[int, int, int]


class ProxOp:
    r"""
    Proximal operator acting on the coordinate range ``[index, index + size)`` of a shared vector.

    Given a step :math:`\tau > 0`, sub-classes evaluate

    .. math::

       \mathbf{prox}_{\tau h}(\mathbf{x}_{0}) = \arg\min_{\mathbf{x}} h(\mathbf{x}) + \frac{1}{2}
       \Vert \mathbf{x} - \mathbf{x}_{0} \Vert_{T^{-1}}^{2},

    where :math:`T` is either the scalar :math:`\tau` or the diagonal matrix :math:`\tau \, \text{diag}(\tau_{d})` when
    the operator accepts diagonal steps.

    Life-cycle: an operator is constructed once, then :py:meth:`~proxpd.abc.ProxOp.initialize` and
    :py:meth:`~proxpd.abc.ProxOp.release` bracket repeated calls to :py:meth:`~proxpd.abc.ProxOp.prox`.

    To implement a new operator, sub-classes overwrite :py:meth:`~proxpd.abc.ProxOp._prox` and optionally
    :py:meth:`~proxpd.abc.ProxOp._init` / :py:meth:`~proxpd.abc.ProxOp.separable_structure`.
    """

    def __init__(
        self,
        index: ppt.Integer = 0,
        size: ppt.Integer = 1,
        diagsteps: bool = False,
    ):
        """
        Parameters
        ----------
        index: Integer
            First coordinate the operator acts on.
        size: Integer
            Number of coordinates the operator acts on.
        diagsteps: bool
            If True, the operator accepts per-coordinate step sizes.  Otherwise a single scalar step is used for all
            coordinates.
        """
        try:
            assert int(index) == index and index >= 0
            assert int(size) == size and size >= 1
        except Exception:
            raise ppe.InvalidParameter(f"(index, size): expected (>=0, >=1) integers, got ({index}, {size}).")
        self._index = int(index)
        self._size = int(size)
        self._diagsteps = bool(diagsteps)
        self._ctx = None

    @property
    def index(self) -> ppt.Integer:
        return self._index

    @property
    def size(self) -> ppt.Integer:
        return self._size

    @property
    def end(self) -> ppt.Integer:
        """
        One past the last coordinate the operator acts on.
        """
        return self._index + self._size

    @property
    def diagsteps(self) -> bool:
        return self._diagsteps

    @property
    def initialized(self) -> bool:
        return self._ctx is not None

    @property
    def ctx(self) -> pprt.Context:
        return self._ctx

    def initialize(self, ctx: pprt.Context = None) -> "ProxOp":
        """
        Prepare the operator for evaluation.

        Parameters
        ----------
        ctx: Context
            Execution context.  (Default: NUMPY backend at runtime precision.)

        Returns
        -------
        op: ProxOp
            The operator itself.
        """
        if ctx is None:
            ctx = pprt.Context()
        self._init(ctx)
        self._ctx = ctx
        return self

    def _init(self, ctx: pprt.Context):
        # Sub-classes move their parameters to `ctx`'s backend here.
        pass

    def release(self):
        """
        Drop backend resources.  Calling this method more than once is a no-op.
        """
        self._ctx = None

    @pprt.enforce_precision(i=("arr", "tau_diag"))
    def prox(
        self,
        arr: ppt.NDArray,
        tau: ppt.Real,
        tau_diag: ppt.NDArray = None,
        invert_tau: bool = False,
    ) -> ppt.NDArray:
        """
        Evaluate the proximal operator.

        Parameters
        ----------
        arr: NDArray
            (..., size) input points.
        tau: Real
            Non-negative scalar step size.
        tau_diag: NDArray
            (size,) per-coordinate step sizes.  Ignored by operators without diagonal steps.
        invert_tau: bool
            Use ``tau / tau_diag`` instead of ``tau * tau_diag`` as effective step.

        Returns
        -------
        out: NDArray
            (..., size) proximal points.  `arr` is never modified.

        Raises
        ------
        NotInitialized
            If :py:meth:`~proxpd.abc.ProxOp.initialize` was not called first.
        DimensionMismatch
            If `arr` or `tau_diag` do not have `size` coordinates.
        InvalidParameter
            If `tau` is negative.
        """
        if not self.initialized:
            raise ppe.NotInitialized(f"{self.__class__.__name__}: call initialize() before prox().")
        ppu.check_size(arr, self._size, name="arr")
        if tau_diag is not None:
            ppu.check_size(tau_diag, self._size, name="tau_diag")
        try:
            assert isinstance(tau, ppt.Real) and (tau >= 0)
        except Exception:
            raise ppe.InvalidParameter(f"tau: expected non-negative real, got {tau}.")
        return self._prox(arr, float(tau), tau_diag, bool(invert_tau))

    def _prox(
        self,
        arr: ppt.NDArray,
        tau: ppt.Real,
        tau_diag: typ.Optional[ppt.NDArray],
        invert_tau: bool,
    ) -> ppt.NDArray:
        raise NotImplementedError

    def _step(
        self,
        tau: ppt.Real,
        tau_diag: typ.Optional[ppt.NDArray],
        invert_tau: bool,
    ) -> ppt.Param:
        # Effective step: scalar unless the operator accepts diagonal steps and some were given.
        if (not self._diagsteps) or (tau_diag is None):
            return tau
        elif invert_tau:
            return tau / tau_diag
        else:
            return tau * tau_diag

    def separable_structure(self) -> list[SepGroup]:
        """
        Coordinate groups which must share a step size.

        Returns
        -------
        groups: list[tuple[int, int, int]]
            ``(index, count, stride)`` triplets: group members are ``index + k * stride`` for ``k < count``.  Fully
            coordinate-separable operators return an empty list.
        """
        if self._diagsteps:
            return []
        else:
            return [(self._index, self._size, 1)]

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(index={self._index}, size={self._size}, diagsteps={self._diagsteps})"
