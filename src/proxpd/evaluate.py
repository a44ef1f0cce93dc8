"""
Direct evaluation of problem components, outside of any solver run.

These helpers initialize the operators they are given (unless already initialized), evaluate them once, and release
what they initialized.
"""

import collections.abc as cabc

import proxpd.factory as ppf
import proxpd.info.ptype as ppt
import proxpd.linop as ppl
import proxpd.opt.solver as ppsl
import proxpd.problem as ppp
import proxpd.runtime as pprt

__all__ = [
    "eval_linop",
    "eval_prox",
    "solve_problem",
]


def eval_prox(
    prox,
    arg: ppt.NDArray,
    tau: ppt.Real,
    tau_diag: ppt.NDArray = None,
    invert_tau: bool = False,
    ctx: pprt.Context = None,
) -> ppt.NDArray:
    """
    Evaluate a proximal operator.

    Parameters
    ----------
    prox: ProxOp, ProxSpec
        Operator or descriptor.  `arg` holds the operator's own `size` coordinates.
    arg: NDArray
        (..., size) input points.
    tau: Real
        Scalar step.
    tau_diag: NDArray
        (size,) diagonal steps.
    invert_tau: bool
        Use ``tau / tau_diag`` as effective step.
    ctx: Context
        Execution context used if `prox` is not initialized yet.

    Returns
    -------
    out: NDArray
        (..., size) proximal points.
    """
    op = ppf.make_prox(prox)
    owned = not op.initialized
    if owned:
        op.initialize(ctx)
    try:
        out = op.prox(arg, tau, tau_diag, invert_tau)
    finally:
        if owned:
            op.release()
    return out


def eval_linop(
    linop,
    arg: ppt.NDArray,
    adjoint: bool = False,
    ctx: pprt.Context = None,
) -> tuple[ppt.NDArray, ppt.NDArray, ppt.NDArray]:
    """
    Evaluate a linear operator.

    Parameters
    ----------
    linop: LinearOperator, ~collections.abc.Iterable
        Operator, or iterable of blocks/block descriptors.
    arg: NDArray
        (..., ncols) input if `adjoint` is False, (..., nrows) otherwise.
    adjoint: bool
        Evaluate the adjoint.
    ctx: Context
        Execution context used if `linop` is not initialized yet.

    Returns
    -------
    result: NDArray
        ``K arg`` or ``K^T arg``.
    row_sums: NDArray
        (nrows,) absolute row sums of `linop`.
    col_sums: NDArray
        (ncols,) absolute column sums of `linop`.
    """
    if not isinstance(linop, ppl.LinearOperator):
        linop = ppl.LinearOperator(blocks=[ppf.make_block(b) for b in linop])
    owned = not linop.initialized
    if owned:
        linop.initialize(ctx)
    try:
        f = linop.adjoint if adjoint else linop.apply
        result = f(arg)
        row_sums, col_sums = linop.row_sums(1).copy(), linop.col_sums(1).copy()
    finally:
        if owned:
            linop.release()
    return result, row_sums, col_sums


def solve_problem(
    problem: ppp.Problem,
    ctx: pprt.Context = None,
    x0: ppt.NDArray = None,
    y0: ppt.NDArray = None,
    callback: cabc.Callable = None,
    callback_rate: ppt.Integer = None,
    cancel: cabc.Callable[[], bool] = None,
    **options,
) -> ppsl.Result:
    """
    Solve a problem with :py:class:`~proxpd.opt.solver.PDHG`.

    Parameters
    ----------
    problem: Problem
        Problem to solve.
    ctx: Context
        Execution context.
    x0, y0: NDArray
        Initial points.
    callback, callback_rate, cancel
        See :py:meth:`~proxpd.opt.solver.PDHG.initialize`.
    options: ~collections.abc.Mapping
        Keyword parameters passed on to :py:class:`~proxpd.opt.solver.PDHG`.

    Returns
    -------
    res: Result
    """
    options.setdefault("show_progress", False)
    slvr = ppsl.PDHG(problem, **options)
    try:
        slvr.initialize(ctx=ctx, callback=callback, callback_rate=callback_rate, cancel=cancel)
        res = slvr.solve(x0=x0, y0=y0)
    finally:
        slvr.release()
    return res
