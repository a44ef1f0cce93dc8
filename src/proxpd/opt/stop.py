import collections.abc as cabc
import datetime as dt
import math

import proxpd.abc as ppa
import proxpd.info.ptype as ppt

__all__ = [
    "ManualStop",
    "MaxDuration",
    "MaxIter",
    "Residual",
    "UserStop",
]


class MaxIter(ppa.StoppingCriterion):
    """
    Stop after `n` iterations.

    AND-ing with another criterion turns it into a warm-up period: ``MaxIter(5) & Residual(1e-4)`` never stops during
    the first 5 iterations.
    """

    status = ppa.SolverStatus.STOPPED_MAX_ITERS

    def __init__(self, n: ppt.Integer):
        """
        Parameters
        ----------
        n: Integer
            Max number of iterations allowed.
        """
        try:
            assert int(n) > 0
            self._n = int(n)
        except Exception:
            raise ValueError(f"n: expected positive integer, got {n}.")
        self._i = 0

    def stop(self, state: cabc.Mapping) -> bool:
        self._i += 1
        return self._i > self._n

    def info(self) -> cabc.Mapping[str, float]:
        return dict(N_iter=self._i)

    def clear(self):
        self._i = 0


class Residual(ppa.StoppingCriterion):
    r"""
    Stop primal-dual solvers once both normalized residuals fall strictly below their thresholds.

    Residuals are read from the solver's math state (keys `r_primal` and `r_dual`).  Solvers which only refresh them
    every few iterations keep the previous values in between.  A threshold of 0 can never be reached.
    """

    status = ppa.SolverStatus.CONVERGED

    def __init__(
        self,
        tol: ppt.Real = None,
        *,
        tol_primal: ppt.Real = None,
        tol_dual: ppt.Real = None,
    ):
        """
        Parameters
        ----------
        tol: Real
            Non-negative threshold shared by both residuals.
        tol_primal, tol_dual: Real
            Per-residual thresholds.  (Default: `tol`.)
        """
        thresh = []
        for name, t in [("tol_primal", tol_primal), ("tol_dual", tol_dual)]:
            if t is None:
                name, t = "tol", tol
            try:
                assert t >= 0
                thresh.append(float(t))
            except Exception:
                raise ValueError(f"{name}: expected non-negative threshold, got {t}.")
        self._tol = tuple(thresh)
        self._val = (math.inf, math.inf)

    def stop(self, state: cabc.Mapping) -> bool:
        self._val = (float(state["r_primal"]), float(state["r_dual"]))
        return all(r < t for (r, t) in zip(self._val, self._tol))

    def info(self) -> cabc.Mapping[str, float]:
        return dict(zip(("r_primal", "r_dual"), self._val))

    def clear(self):
        self._val = (math.inf, math.inf)


class UserStop(ppa.StoppingCriterion):
    """
    Stop iterative solver when a user-supplied predicate returns True.

    The predicate is polled once per completed iteration: it is never called before the first iteration.
    """

    status = ppa.SolverStatus.STOPPED_USER

    def __init__(self, cancel: cabc.Callable[[], bool]):
        """
        Parameters
        ----------
        cancel: ~collections.abc.Callable
            Argument-less predicate.
        """
        if not callable(cancel):
            raise ValueError(f"cancel: expected callable, got {type(cancel)}.")
        self._cancel = cancel
        self._i = 0
        self._val = False

    def stop(self, state: cabc.Mapping) -> bool:
        self._i += 1
        self._val = (self._i > 1) and bool(self._cancel())
        return self._val

    def info(self) -> cabc.Mapping[str, float]:
        return dict(cancelled=float(self._val))

    def clear(self):
        self._i = 0
        self._val = False


class ManualStop(ppa.StoppingCriterion):
    """
    Never stop on its own.

    Pair with mode=MANUAL (stop pulling from :py:meth:`~proxpd.abc.Solver.steps`) or mode=ASYNC (call
    :py:meth:`~proxpd.abc.Solver.stop`).
    """

    def stop(self, state: cabc.Mapping) -> bool:
        return False

    def info(self) -> cabc.Mapping[str, float]:
        return dict()


class MaxDuration(ppa.StoppingCriterion):
    """
    Wall-clock budget, measured from the start of the run.  Solvers stopped this way report STOPPED_USER.
    """

    def __init__(self, t: dt.timedelta):
        if not (isinstance(t, dt.timedelta) and t > dt.timedelta()):
            raise ValueError(f"t: expected positive duration, got {t}.")
        self._t_max = t
        self.clear()

    def stop(self, state: cabc.Mapping) -> bool:
        self._t_now = dt.datetime.now()
        return (self._t_now - self._t_start) > self._t_max

    def info(self) -> cabc.Mapping[str, float]:
        return dict(duration=(self._t_now - self._t_start).total_seconds())

    def clear(self):
        self._t_start = dt.datetime.now()
        self._t_now = self._t_start
