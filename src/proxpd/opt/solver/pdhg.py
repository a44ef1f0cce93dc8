import collections
import collections.abc as cabc
import math
import typing as typ
import warnings

import numpy as np

import proxpd.abc as ppa
import proxpd.info.error as ppe
import proxpd.info.ptype as ppt
import proxpd.info.warning as ppw
import proxpd.opt.stop as ppst
import proxpd.runtime as pprt
import proxpd.util as ppu

if typ.TYPE_CHECKING:
    import proxpd.problem as ppp

__all__ = [
    "PDHG",
    "Result",
]

#: Final iterates of a primal-dual run.
Result = collections.namedtuple("Result", "x Kx y Kty status")

Callback = cabc.Callable[[int, ppt.NDArray, ppt.NDArray], None]


class PDHG(ppa.Solver):
    r"""
    Preconditioned Primal-Dual Hybrid Gradient (PDHG) method.

    PDHG solves problems of the form

    .. math::

       \min_{\mathbf{x} \in \mathbb{R}^{N}} f(\mathbf{K} \mathbf{x}) + g(\mathbf{x}),

    given the proximal operators of :math:`g` and :math:`f^{\ast}`, via the iterations

    .. math::

       \begin{align*}
       \mathbf{x}_{k+1} &= \mathbf{prox}_{T g}(\mathbf{x}_{k} - T \mathbf{K}^{\top} \mathbf{y}_{k}), \\
       \bar{\mathbf{x}}_{k+1} &= \mathbf{x}_{k+1} + \theta (\mathbf{x}_{k+1} - \mathbf{x}_{k}), \\
       \mathbf{y}_{k+1} &= \mathbf{prox}_{\Sigma f^{\ast}}(\mathbf{y}_{k} + \Sigma \mathbf{K} \bar{\mathbf{x}}_{k+1}),
       \end{align*}

    where :math:`T, \Sigma` are diagonal preconditioners.

    Remarks
    -------
    * With ``precond="alpha"``, :math:`T_{jj} = 1 / \sum_{i} |K_{ij}|^{p}` and :math:`\Sigma_{ii} = 1 / \sum_{j}
      |K_{ij}|^{2-p}`.  Empty rows/columns yield unit steps.  Steps are then averaged over every coordinate group
      reported by :py:meth:`~proxpd.abc.ProxOp.separable_structure`.  Sums are those of
      :py:meth:`~proxpd.linop.LinearOperator.row_sums`/:py:meth:`~proxpd.linop.LinearOperator.col_sums`: overlapping
      blocks contribute separately.
    * With ``precond="off"``, :math:`T = \Sigma = 1 / \Vert \mathbf{K} \Vert_{2}`.
    * Every `residual_rate` iterations the normalized residuals

      .. math::

         r_{p} = \frac{\Vert T^{-1} (\mathbf{x}_{k} - \mathbf{x}_{k+1}) - \mathbf{K}^{\top} (\mathbf{y}_{k} -
         \mathbf{y}_{k+1}) \Vert_{2}}{\sqrt{N}}, \qquad
         r_{d} = \frac{\Vert \Sigma^{-1} (\mathbf{y}_{k} - \mathbf{y}_{k+1}) - \mathbf{K} (\mathbf{x}_{k} -
         \mathbf{x}_{k+1}) \Vert_{2}}{\sqrt{M}}

      are computed.  The solver has CONVERGED once :math:`r_{p}` and :math:`r_{d}` are strictly below `tol_primal`
      and `tol_dual` respectively.
    * When several stopping conditions hold on the same iteration, CONVERGED takes precedence over STOPPED_MAX_ITERS,
      which takes precedence over STOPPED_USER.

    Parameters (``__init__()``)
    ---------------------------
    * **problem** (:py:class:`~proxpd.problem.Problem`)
      --
      Problem to solve.
    * **max_iter** (:py:attr:`~proxpd.info.ptype.Integer`)
      --
      Maximum number of iterations.
    * **tol** (:py:attr:`~proxpd.info.ptype.Real`)
      --
      Residual threshold.
    * **tol_primal**, **tol_dual** (:py:attr:`~proxpd.info.ptype.Real`)
      --
      Per-residual thresholds.  (Default: `tol`.)
    * **residual_rate** (:py:attr:`~proxpd.info.ptype.Integer`)
      --
      Residual evaluation interval.
    * **theta** (:py:attr:`~proxpd.info.ptype.Real`)
      --
      Extrapolation parameter in [0, 1].
    * **precond** ("alpha", "off")
      --
      Step-size strategy.
    * **precond_power** (:py:attr:`~proxpd.info.ptype.Real`)
      --
      Exponent `p` in [0, 2] of the diagonal preconditioner.
    * **\*\*kwargs** (:py:class:`~collections.abc.Mapping`)
      --
      Other keyword parameters passed on to :py:meth:`proxpd.abc.Solver.__init__`.

    Parameters (``initialize()``)
    -----------------------------
    * **ctx** (:py:class:`~proxpd.runtime.Context`)
      --
      Execution context.
    * **callback** (:py:class:`~collections.abc.Callable`)
      --
      ``callback(iteration, x, y)`` progress hook, fed with read-only copies of the iterates.
    * **callback_rate** (:py:attr:`~proxpd.info.ptype.Integer`)
      --
      Callback interval.  (Default: every iteration.)
    * **cancel** (:py:class:`~collections.abc.Callable`)
      --
      Argument-less predicate polled after every iteration: the run stops with STOPPED_USER once it returns True.

    Example
    -------
    .. code-block:: python3

       slvr = PDHG(problem, max_iter=500, tol=1e-6, show_progress=False)
       slvr.initialize()
       res = slvr.solve()
       res.status  # SolverStatus.CONVERGED
       slvr.release()
    """

    def __init__(
        self,
        problem: "ppp.Problem",
        *,
        max_iter: ppt.Integer = 1000,
        tol: ppt.Real = 1e-6,
        tol_primal: ppt.Real = None,
        tol_dual: ppt.Real = None,
        residual_rate: ppt.Integer = 10,
        theta: ppt.Real = 1,
        precond: str = "alpha",
        precond_power: ppt.Real = 1,
        **kwargs,
    ):
        kwargs.setdefault("log_var", ("x", "y"))
        super().__init__(**kwargs)

        try:
            assert int(max_iter) == max_iter and max_iter >= 1
        except Exception:
            raise ppe.InvalidParameter(f"max_iter: expected positive integer, got {max_iter}.")
        thresh = dict(tol=tol, tol_primal=tol if (tol_primal is None) else tol_primal)
        thresh.update(tol_dual=tol if (tol_dual is None) else tol_dual)
        for name, t in thresh.items():
            try:
                assert t >= 0
            except Exception:
                raise ppe.InvalidParameter(f"{name}: expected non-negative threshold, got {t}.")
        try:
            assert int(residual_rate) == residual_rate and residual_rate >= 1
        except Exception:
            raise ppe.InvalidParameter(f"residual_rate: expected positive integer, got {residual_rate}.")
        try:
            assert 0 <= theta <= 1
        except Exception:
            raise ppe.InvalidParameter(f"theta: expected value in [0, 1], got {theta}.")
        try:
            precond = precond.strip().lower()
            assert precond in ("alpha", "off")
        except Exception:
            raise ppe.InvalidParameter(f"precond: expected 'alpha'/'off', got {precond}.")
        try:
            assert 0 <= precond_power <= 2
        except Exception:
            raise ppe.InvalidParameter(f"precond_power: expected value in [0, 2], got {precond_power}.")

        self._problem = problem
        self._opt = dict(
            max_iter=int(max_iter),
            **{k: float(v) for (k, v) in thresh.items()},
            residual_rate=int(residual_rate),
            theta=float(theta),
            precond=precond,
            precond_power=float(precond_power),
        )
        self._astate.update(setup=None)

    @property
    def problem(self) -> "ppp.Problem":
        return self._problem

    @property
    def options(self) -> cabc.Mapping[str, typ.Any]:
        return dict(self._opt)

    def initialize(
        self,
        ctx: pprt.Context = None,
        callback: Callback = None,
        callback_rate: ppt.Integer = None,
        cancel: cabc.Callable[[], bool] = None,
    ) -> "PDHG":
        """
        Initialize problem operators, compute step sizes and capture run-time hooks.

        Returns
        -------
        slvr: PDHG
            The solver itself, in READY state.
        """
        if self.status is ppa.SolverStatus.RUNNING:
            raise ppe.SolverBusy("PDHG: cannot initialize() while running, call stop() first.")
        if ctx is None:
            ctx = pprt.Context()
        if (callback is not None) and (not callable(callback)):
            raise ppe.InvalidParameter(f"callback: expected callable, got {type(callback)}.")
        if (cancel is not None) and (not callable(cancel)):
            raise ppe.InvalidParameter(f"cancel: expected callable, got {type(cancel)}.")
        try:
            if callback_rate is None:
                callback_rate = 1
            assert int(callback_rate) == callback_rate and callback_rate >= 1
        except Exception:
            raise ppe.InvalidParameter(f"callback_rate: expected positive integer, got {callback_rate}.")

        self._problem.initialize(ctx)
        tau, sigma = self._step_sizes()
        self._astate.update(
            setup=dict(
                ctx=ctx,
                tau=tau if isinstance(tau, float) else ctx.asarray(tau),
                sigma=sigma if isinstance(sigma, float) else ctx.asarray(sigma),
                callback=callback,
                callback_rate=int(callback_rate),
                cancel=cancel,
            ),
            status=ppa.SolverStatus.READY,
        )
        return self

    def _step_sizes(self) -> tuple[ppt.Param, ppt.Param]:
        K = self._problem.linop
        if self._opt["precond"] == "off":
            L = K.estimate_norm()
            if L == 0:
                warnings.warn("Linear operator has zero norm: using unit steps.", ppw.PreconditionWarning)
                L = 1.0
            return 1 / L, 1 / L

        p = self._opt["precond_power"]
        tau = self._invert(K.col_sums(p), "columns")
        sigma = self._invert(K.row_sums(2 - p), "rows")

        for s, op in [(tau, self._problem.g), (sigma, self._problem.fstar)]:
            for index, count, stride in op.separable_structure():
                idx = index + stride * np.arange(count)
                s[idx] = s[idx].mean()
        return tau, sigma

    @staticmethod
    def _invert(s: np.ndarray, name: str) -> np.ndarray:
        empty = s == 0
        if n_empty := int(empty.sum()):
            msg = f"{n_empty} empty {name} in linear operator: using unit steps there."
            warnings.warn(msg, ppw.PreconditionWarning)
        return 1 / np.where(empty, 1, s)

    def _check_ready(self):
        if self._astate["setup"] is None:
            raise ppe.NotInitialized("PDHG: call initialize() first.")

    def fit(self, **kwargs):
        r"""
        Run the solver.  See :py:meth:`~proxpd.abc.Solver.fit` for execution modes.

        Parameters
        ----------
        x0: NDArray
            (N,) initial primal point.  (Default: 0.)
        y0: NDArray
            (M,) initial dual point.  (Default: 0.)
        \*\*kwargs: ~collections.abc.Mapping
            Other keyword parameters passed on to :py:meth:`proxpd.abc.Solver.fit`.
        """
        self._check_ready()
        super().fit(**kwargs)

    def solve(
        self,
        x0: ppt.NDArray = None,
        y0: ppt.NDArray = None,
    ) -> Result:
        """
        Iterate until a stopping condition holds.

        Returns
        -------
        res: Result
            Final iterates ``(x, Kx, y, Kty, status)``.

        Raises
        ------
        NotInitialized
            If :py:meth:`~proxpd.opt.solver.PDHG.initialize` was not called first.
        Exception
            Any exception raised while iterating.  It is also written to :py:attr:`~proxpd.abc.Solver.logfile`.
            The solver is then back in the status it had before the call, e.g. READY.
        """
        self.fit(x0=x0, y0=y0, mode=ppa.SolverMode.BLOCK)
        return self.result()

    def m_init(
        self,
        x0: ppt.NDArray = None,
        y0: ppt.NDArray = None,
    ):
        setup = self._astate["setup"]
        ctx = setup["ctx"]
        K = self._problem.linop
        M, N = K.shape

        with pprt.Precision(ctx.width):
            x = self._init_point(x0, N, "x0", ctx)
            y = self._init_point(y0, M, "y0", ctx)

            mst = self._mstate  # shorthand
            mst["x"], mst["y"] = x, y
            mst["x_prev"], mst["y_prev"] = x, y
            mst["Kx"], mst["Kty"] = K.apply(x), K.adjoint(y)
            mst["tau"], mst["sigma"] = setup["tau"], setup["sigma"]
            mst["r_primal"] = mst["r_dual"] = math.inf

        self._astate["logger"].info(
            " ".join(
                [
                    f"PDHG: shape={K.shape}, {ctx},",
                    ", ".join(f"{k}={v}" for (k, v) in self._opt.items()),
                ]
            )
        )

    @staticmethod
    def _init_point(z0, size: int, name: str, ctx: pprt.Context) -> ppt.NDArray:
        if z0 is None:
            return ctx.zeros(size)
        z0 = ctx.asarray(z0)
        if z0.shape != (size,):
            raise ppe.DimensionMismatch(f"{name}: expected shape ({size},), got {z0.shape}.")
        return z0

    def m_step(self):
        setup = self._astate["setup"]
        it = self._astate["idx"]  # index of the iteration being computed.
        K, g, fstar = self._problem.linop, self._problem.g, self._problem.fstar
        theta = self._opt["theta"]

        with pprt.Precision(setup["ctx"].width):
            mst = self._mstate  # shorthand
            x, y, Kx, Kty = mst["x"], mst["y"], mst["Kx"], mst["Kty"]
            tau, sigma = mst["tau"], mst["sigma"]

            x_next = self._prox(g, x - tau * Kty, tau)
            Kx_next = K.apply(x_next)
            Kx_bar = Kx_next + theta * (Kx_next - Kx)  # K x_bar, by linearity.
            y_next = self._prox(fstar, y + sigma * Kx_bar, sigma)
            Kty_next = K.adjoint(y_next)

            if it % self._opt["residual_rate"] == 0:
                mst["r_primal"] = self._norm((x - x_next) / tau - (Kty - Kty_next)) / math.sqrt(x.size)
                mst["r_dual"] = self._norm((y - y_next) / sigma - (Kx - Kx_next)) / math.sqrt(y.size)

            mst.update(
                x_prev=x,
                y_prev=y,
                x=x_next,
                y=y_next,
                Kx=Kx_next,
                Kty=Kty_next,
            )

        if ((callback := setup["callback"]) is not None) and (it % setup["callback_rate"] == 0):
            callback(
                it,
                ppu.read_only(x_next.copy()),
                ppu.read_only(y_next.copy()),
            )

    @staticmethod
    def _prox(op: ppa.ProxOp, arr: ppt.NDArray, step: ppt.Param) -> ppt.NDArray:
        if isinstance(step, float):
            return op.prox(arr, step)
        else:
            return op.prox(arr, 1, tau_diag=step)

    @staticmethod
    def _norm(x: ppt.NDArray) -> float:
        xp = ppu.get_array_module(x)
        return float(xp.sqrt(xp.sum(x**2)))

    def default_stop_crit(self) -> ppa.StoppingCriterion:
        stop_crit = ppst.MaxIter(n=self._opt["max_iter"]) | ppst.Residual(
            tol_primal=self._opt["tol_primal"],
            tol_dual=self._opt["tol_dual"],
        )
        if (cancel := self._astate["setup"]["cancel"]) is not None:
            stop_crit |= ppst.UserStop(cancel)
        return stop_crit

    def result(self) -> Result:
        """
        Final iterates of the last run.

        ``Kx`` and ``Kty`` are recomputed from the final iterates.

        Returns
        -------
        res: Result
        """
        self._check_ready()
        mst = self._mstate
        if "x" not in mst:
            raise ValueError("Illegal method call: invoke PDHG.solve() first.")

        K = self._problem.linop
        with pprt.Precision(self._astate["setup"]["ctx"].width):
            x, y = mst["x"].copy(), mst["y"].copy()
            Kx, Kty = K.apply(x), K.adjoint(y)
        x, Kx, y, Kty = ppu.compute(x, Kx, y, Kty)
        return Result(x=x, Kx=Kx, y=y, Kty=Kty, status=self.status)

    def solution(self, which: typ.Literal["primal", "dual"] = "primal") -> ppt.NDArray:
        """
        Last primal (`x`) or dual (`y`) iterate, as logged by the solver.
        """
        key = dict(primal="x", dual="y").get(which)
        if key is None:
            raise ValueError(f"which: expected primal/dual, got {which}.")
        data, _ = self.stats()
        if key not in data:
            raise ValueError(f"Variable {key} was not logged: declare it in log_var.")
        return data[key]

    def release(self):
        """
        Drop iterates and release problem operators.

        Legal from every state: an async-running solver is stopped first.  Calling this method more than once is a
        no-op.
        """
        if self.status is ppa.SolverStatus.RELEASED:
            return
        try:
            if self._astate["mode"] is ppa.SolverMode.ASYNC:
                self.stop()
        finally:
            self._astate["mode"] = None
            self._mstate.clear()
            self._problem.release()
            self._astate.update(
                setup=None,
                status=ppa.SolverStatus.RELEASED,
            )
