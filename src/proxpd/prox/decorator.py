import numpy as np

import proxpd.abc as ppa
import proxpd.info.deps as ppd
import proxpd.info.error as ppe
import proxpd.info.ptype as ppt
import proxpd.runtime as pprt
import proxpd.util as ppu

__all__ = [
    "ProxMoreau",
    "ProxPermute",
    "ProxTransform",
]


class _ProxDecorator(ppa.ProxOp):
    # Wraps an inner operator: geometry is inherited, life-cycle calls are forwarded.

    def __init__(self, prox: ppa.ProxOp):
        if not isinstance(prox, ppa.ProxOp):
            raise ppe.InvalidParameter(f"prox: expected ProxOp, got {type(prox)}.")
        super().__init__(index=prox.index, size=prox.size, diagsteps=prox.diagsteps)
        self._prox_op = prox

    @property
    def inner(self) -> ppa.ProxOp:
        return self._prox_op

    def _init(self, ctx: pprt.Context):
        self._prox_op.initialize(ctx)

    def release(self):
        self._prox_op.release()
        super().release()

    def separable_structure(self) -> list[tuple[int, int, int]]:
        return self._prox_op.separable_structure()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self._prox_op!r})"


class ProxMoreau(_ProxDecorator):
    r"""
    Proximal operator of the convex conjugate :math:`f^{\ast}`, obtained from the one of :math:`f` via Moreau's
    identity:

    .. math::

       \mathbf{prox}_{T f^{\ast}}(\mathbf{x}) = \mathbf{x} - T \, \mathbf{prox}_{T^{-1} f}(T^{-1} \mathbf{x}).

    The inner operator is evaluated with inverted steps, so diagonal steps :math:`T` remain exact.
    """

    def _prox(self, arr, tau, tau_diag, invert_tau):
        if tau <= 0:
            raise ppe.InvalidParameter(f"tau: ProxMoreau requires a positive step, got {tau}.")
        T = self._step(tau, tau_diag, invert_tau)
        y = self._prox_op.prox(arr / T, 1 / tau, tau_diag, not invert_tau)
        return arr - T * y


class ProxPermute(_ProxDecorator):
    """
    Evaluate an inner operator on permuted coordinates: ``out[..., perm] = prox(arr[..., perm])``.
    """

    def __init__(self, prox: ppa.ProxOp, perm: ppt.NDArray):
        """
        Parameters
        ----------
        prox: ProxOp
            Inner operator.
        perm: NDArray
            (size,) bijection of ``[0, size)``.  The inner operator sees ``arr[..., perm]``.
        """
        super().__init__(prox)
        try:
            perm = ppu.to_NUMPY(perm)
        except ValueError:
            perm = np.asarray(perm)
        try:
            assert perm.shape == (self._size,)
            assert np.issubdtype(perm.dtype, np.integer)
            assert np.array_equal(np.sort(perm), np.arange(self._size))
        except Exception:
            raise ppe.InvalidParameter(f"perm: expected a permutation of [0, {self._size}).")
        self._perm = perm
        self._iperm = np.argsort(perm)
        self._idx = (self._perm, self._iperm)

    @property
    def perm(self) -> ppt.NDArray:
        return ppu.read_only(self._perm)

    def _init(self, ctx: pprt.Context):
        super()._init(ctx)
        if ctx.backend == ppd.NDArrayInfo.CUPY:
            self._idx = tuple(ctx.xp.asarray(_) for _ in (self._perm, self._iperm))
        else:
            self._idx = (self._perm, self._iperm)

    def _prox(self, arr, tau, tau_diag, invert_tau):
        p, ip = self._idx
        if tau_diag is not None:
            tau_diag = tau_diag[p]
        y = self._prox_op.prox(arr[..., p], tau, tau_diag, invert_tau)
        return y[..., ip]

    def separable_structure(self) -> list[tuple[int, int, int]]:
        # Permuted groups are not (index, count, stride)-shaped in general: couple the full range instead.
        if len(self._prox_op.separable_structure()) > 0:
            return [(self._index, self._size, 1)]
        else:
            return []


class ProxTransform(_ProxDecorator):
    r"""
    Proximal operator of

    .. math::

       g(x) = c \, h(a x + b) + d x + \frac{e}{2} x^{2},

    given the proximal operator of :math:`h`.

    With effective step :math:`T`, the prox is obtained as

    .. math::

       T' = \frac{T}{1 + e T}, \qquad x_{0}' = \frac{x_{0} - T d}{1 + e T}, \qquad
       \mathbf{prox}_{T g}(x_{0}) = \frac{\mathbf{prox}_{T' c a^{2} h}(a x_{0}' + b) - b}{a}.

    Parameters `a`, ..., `e` are scalars or (size,) vectors.  Vector-valued `a`, `c`, `e` yield per-coordinate inner
    steps, hence require an inner operator which accepts diagonal steps.
    """

    def __init__(
        self,
        prox: ppa.ProxOp,
        a: ppt.Param = 1,
        b: ppt.Param = 0,
        c: ppt.Param = 1,
        d: ppt.Param = 0,
        e: ppt.Param = 0,
    ):
        super().__init__(prox)
        param = dict()
        for k, v in dict(a=a, b=b, c=c, d=d, e=e).items():
            param[k] = ppu.as_param(v, self._size, name=k)
        host = {k: np.asarray(v if isinstance(v, float) else ppu.to_NUMPY(v)) for (k, v) in param.items()}
        try:
            assert np.all(host["a"] != 0)
        except Exception:
            raise ppe.InvalidParameter("a: affine scale must be non-zero.")
        try:
            assert np.all(host["c"] > 0)
        except Exception:
            raise ppe.InvalidParameter("c: function scale must be positive.")
        try:
            assert np.all(host["e"] >= 0)
        except Exception:
            raise ppe.InvalidParameter("e: quadratic weight must be non-negative.")

        vector_step = any(not isinstance(param[k], float) for k in "ace")
        if vector_step and (not prox.diagsteps):
            raise ppe.InvalidParameter("Vector-valued (a, c, e) require an inner operator with diagonal steps.")

        self._param = param
        self._dparam = param

    def _init(self, ctx: pprt.Context):
        super()._init(ctx)
        self._dparam = {k: v if isinstance(v, float) else ctx.asarray(v) for (k, v) in self._param.items()}

    def _prox(self, arr, tau, tau_diag, invert_tau):
        a, b, c, d, e = [self._dparam[k] for k in "abcde"]
        T = self._step(tau, tau_diag, invert_tau)

        s = 1 + e * T
        x0 = (arr - T * d) / s
        S = (T / s) * c * (a * a)

        if isinstance(S, float):
            y = self._prox_op.prox(a * x0 + b, S)
        else:
            y = self._prox_op.prox(a * x0 + b, 1, tau_diag=S)
        return (y - b) / a
