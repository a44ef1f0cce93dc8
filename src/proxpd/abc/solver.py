import collections.abc as cabc
import datetime as dt
import enum
import logging
import operator
import pathlib as plib
import shutil
import sys
import tempfile
import threading
import typing as typ

import numpy as np

import proxpd.info.ptype as ppt
import proxpd.util as ppu

__all__ = [
    "SolverMode",
    "SolverStatus",
    "Solver",
    "StoppingCriterion",
]


@enum.unique
class SolverMode(enum.Enum):
    """
    How :py:meth:`~proxpd.abc.Solver.fit` drives iterations.

    * BLOCK: iterate in a worker thread, return once stopped.
    * ASYNC: iterate in a worker thread, return immediately.
    * MANUAL: iterate on demand via :py:meth:`~proxpd.abc.Solver.steps`.
    """

    BLOCK = enum.auto()
    MANUAL = enum.auto()
    ASYNC = enum.auto()


@enum.unique
class SolverStatus(enum.Enum):
    """
    Solver life-cycle states.

    Terminal states of a run are CONVERGED, STOPPED_MAX_ITERS and STOPPED_USER.  When several stopping criteria fire on
    the same iteration, the run reports the first of them in :py:meth:`~proxpd.abc.SolverStatus.precedence` order.
    """

    UNINITIALIZED = enum.auto()
    READY = enum.auto()
    RUNNING = enum.auto()
    CONVERGED = enum.auto()
    STOPPED_MAX_ITERS = enum.auto()
    STOPPED_USER = enum.auto()
    RELEASED = enum.auto()

    @classmethod
    def precedence(cls) -> tuple["SolverStatus"]:
        return (cls.CONVERGED, cls.STOPPED_MAX_ITERS, cls.STOPPED_USER)

    def terminal(self) -> bool:
        return self in self.precedence()


class StoppingCriterion:
    """
    Stateful predicate deciding when an iterative solver should stop.

    A criterion inspects the solver's math state once per iteration and exposes the statistics its decision was based
    on through :py:meth:`~proxpd.abc.StoppingCriterion.info`.  Criteria compose with ``|`` and ``&``.  Both operands of
    a composition are always evaluated, so :py:meth:`~proxpd.abc.StoppingCriterion.fired` can list every criterion that
    triggered on a given iteration.
    """

    #: Terminal solver state reported when this criterion stops a solver.
    status: SolverStatus = SolverStatus.STOPPED_USER

    def stop(self, state: cabc.Mapping[str]) -> bool:
        """
        Parameters
        ----------
        state: ~collections.abc.Mapping
            Math state of the solver (:py:attr:`~proxpd.abc.Solver._mstate`).  Values may be cached across calls.

        Returns
        -------
        s: bool
            True if the solver should stop.
        """
        raise NotImplementedError

    def decide(self, state: cabc.Mapping[str]) -> bool:
        """
        :py:meth:`~proxpd.abc.StoppingCriterion.stop`, with the outcome remembered for
        :py:meth:`~proxpd.abc.StoppingCriterion.fired`.  Solvers only call this method.
        """
        self._decision = bool(self.stop(state))
        return self._decision

    def fired(self) -> list["StoppingCriterion"]:
        """
        Leaf criteria which voted to stop on the last :py:meth:`~proxpd.abc.StoppingCriterion.decide` call.
        """
        return [self] if getattr(self, "_decision", False) else []

    def info(self) -> cabc.Mapping[str, float]:
        """
        Statistics of the last :py:meth:`~proxpd.abc.StoppingCriterion.stop` call, keyed by name.
        """
        raise NotImplementedError

    def clear(self):
        """
        Drop cached state so the instance can be reused by another :py:meth:`~proxpd.abc.Solver.fit` call.
        """
        pass

    def _reset(self):
        self._decision = False
        self.clear()

    def __or__(self, other: "StoppingCriterion") -> "StoppingCriterion":
        return _StoppingCriteriaComposition(lhs=self, rhs=other, op=operator.or_)

    def __and__(self, other: "StoppingCriterion") -> "StoppingCriterion":
        return _StoppingCriteriaComposition(lhs=self, rhs=other, op=operator.and_)


class _StoppingCriteriaComposition(StoppingCriterion):
    def __init__(
        self,
        lhs: "StoppingCriterion",
        rhs: "StoppingCriterion",
        op: cabc.Callable[[bool, bool], bool],
    ):
        self._lhs = lhs
        self._rhs = rhs
        self._op = op

    def stop(self, state: cabc.Mapping) -> bool:
        # Evaluate both sides eagerly: no short-circuit.
        lhs, rhs = self._lhs.decide(state), self._rhs.decide(state)
        return self._op(lhs, rhs)

    def fired(self) -> list["StoppingCriterion"]:
        if not getattr(self, "_decision", False):
            return []
        return self._lhs.fired() + self._rhs.fired()

    def info(self) -> cabc.Mapping[str, float]:
        return {**self._lhs.info(), **self._rhs.info()}

    def clear(self):
        self._lhs._reset()
        self._rhs._reset()


def _as_workdir(folder: ppt.Path, exist_ok: bool) -> plib.Path:
    if folder is None:
        return plib.Path(tempfile.mkdtemp(prefix="proxpd_"))
    try:
        folder = plib.Path(folder).expanduser().resolve()
    except TypeError:
        raise ValueError(f"folder: expected path-like, got {type(folder)}.")
    if folder.exists():
        if not exist_ok:
            raise FileExistsError(f"{folder} already exists.")
        shutil.rmtree(folder)
    folder.mkdir(parents=True)
    return folder


def _as_rate(rate, name: str, allow_zero: bool = False) -> typ.Optional[int]:
    if rate is None:
        return None
    try:
        assert int(rate) == rate
        assert (rate >= 0) if allow_zero else (rate >= 1)
    except Exception:
        bound = "non-negative" if allow_zero else "positive"
        raise ValueError(f"{name}: expected None or {bound} integer, got {rate}.")
    return int(rate)


def _make_logger(name: str, logfile: plib.Path, stdout: bool) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.handlers.clear()
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    handlers = [logging.FileHandler(logfile, mode="w")]
    if stdout:
        handlers.append(logging.StreamHandler(sys.stdout))
    fmt = logging.Formatter(fmt="{levelname} -- {message}", style="{")
    for h in handlers:
        h.setFormatter(fmt)
        logger.addHandler(h)
    return logger


class Solver:
    r"""
    Base class of iterative solvers.

    Sub-classes define the maths by overriding :py:meth:`~proxpd.abc.Solver.m_init`,
    :py:meth:`~proxpd.abc.Solver.m_step` and (optionally) :py:meth:`~proxpd.abc.Solver.default_stop_crit`.  The base
    class takes care of the rest:

    * driving iterations in one of the :py:class:`~proxpd.abc.SolverMode` run-modes;
    * evaluating the :py:class:`~proxpd.abc.StoppingCriterion` before every iteration and recording its statistics;
    * logging progress to :py:attr:`~proxpd.abc.Solver.logfile` (and optionally stdout);
    * checkpointing logged variables to :py:attr:`~proxpd.abc.Solver.datafile`.

    Exceptions raised while iterating are logged, then re-raised to the caller of
    :py:meth:`~proxpd.abc.Solver.fit`/:py:meth:`~proxpd.abc.Solver.stop`/:py:meth:`~proxpd.abc.Solver.steps`.

    Examples
    --------
    .. code-block:: python3

       slvr.fit(mode=SolverMode.BLOCK, ...)  # returns once stopped
       data, hist = slvr.stats()

       slvr.fit(mode=SolverMode.ASYNC, ...)  # returns immediately
       slvr.busy()  # still iterating?
       slvr.stop()  # mandatory, even if busy() is False

       slvr.fit(mode=SolverMode.MANUAL, ...)
       for data in slvr.steps():  # one item per iteration
           pass
    """

    _mstate: dict[str, typ.Any]  #: Mathematical state.
    _astate: dict[str, typ.Any]  #: Book-keeping (non-math) state.

    def __init__(
        self,
        *,
        folder: ppt.Path = None,
        exist_ok: bool = False,
        writeback_rate: ppt.Integer = None,
        verbosity: ppt.Integer = 1,
        show_progress: bool = True,
        log_var: ppt.VarName = frozenset(),
    ):
        """
        Parameters
        ----------
        folder: Path
            Directory holding the logfile and checkpoints.  (Default: fresh temporary directory.)
        exist_ok: bool
            Overwrite `folder` if it exists.  If False (default), an existing `folder` raises
            :py:class:`FileExistsError`.
        writeback_rate: Integer
            Checkpoint interval:

            - None (default): no checkpoints, logged variables only live in memory;
            - 0: checkpoint once, when the solver stops;
            - n > 0: checkpoint every n iterations, and when the solver stops.
        verbosity: Integer
            Log stopping-criterion statistics every `verbosity` iterations.
        show_progress: bool
            Also log to stdout when running in BLOCK mode.
        log_var: VarName
            Math-state variables returned by :py:meth:`~proxpd.abc.Solver.stats` and checkpointed to disk.

        Notes
        -----
        Checkpoints synchronize device arrays with the host.  Raise `writeback_rate` to amortize transfers.
        """
        if isinstance(log_var, str):
            log_var = (log_var,)
        try:
            log_var = frozenset(log_var)
        except TypeError:
            raise ValueError(f"log_var: expected collection, got {type(log_var)}.")

        self._mstate = dict()
        self._astate = dict(
            error=None,  # exception raised while iterating
            status_prev=None,  # status before the current run, restored if it fails
            history=None,  # stopping-criterion statistics, one record per iteration
            idx=0,  # completed iterations
            log_rate=_as_rate(verbosity, "verbosity"),
            log_var=log_var,
            logger=None,
            status=SolverStatus.UNINITIALIZED,
            stdout=bool(show_progress),
            stop_crit=None,
            wb_rate=_as_rate(writeback_rate, "writeback_rate", allow_zero=True),
            workdir=_as_workdir(folder, exist_ok),
            # run-mode ---------------------
            mode=None,
            active=None,
            worker=None,
        )
        if self._astate["log_rate"] is None:
            raise ValueError("verbosity: expected positive integer, got None.")

    def fit(self, **kwargs):
        """
        Run the solver.

        Parameters
        ----------
        stop_crit: StoppingCriterion
            Defaults to :py:meth:`~proxpd.abc.Solver.default_stop_crit`.
        mode: SolverMode
            Run-mode.  (Default: BLOCK.)
        kwargs
            Forwarded to :py:meth:`~proxpd.abc.Solver.m_init`.
        """
        self._fit_init(
            mode=kwargs.pop("mode", SolverMode.BLOCK),
            stop_crit=kwargs.pop("stop_crit", None),
        )
        try:
            self.m_init(**kwargs)
        except Exception:
            self._fit_abort()
            raise
        self._fit_run()

    def m_init(self, **kwargs):
        """
        Populate :py:attr:`~proxpd.abc.Solver._mstate` with the starting point of a run.
        """
        raise NotImplementedError

    def m_step(self):
        """
        Advance :py:attr:`~proxpd.abc.Solver._mstate` by one iteration.
        """
        raise NotImplementedError

    def default_stop_crit(self) -> StoppingCriterion:
        """
        Stopping criterion used when :py:meth:`~proxpd.abc.Solver.fit` receives none.
        """
        raise NotImplementedError("No default stopping criterion defined.")

    def steps(self, n: ppt.Integer = None) -> cabc.Generator:
        """
        Iterate a MANUAL-mode solver, yielding the logged variables after each iteration.

        Parameters
        ----------
        n: Integer
            Yield at most `n` times.  (Default: until the solver stops.)
        """
        self._check_mode(SolverMode.MANUAL)
        i = 0
        while (n is None) or (i < n):
            if not self._step():
                self._astate["mode"] = None  # exhausted generators cannot be restarted.
                self._close_logger()
                self._raise_if_failed()
                return
            data, _ = self.stats()
            yield data
            i += 1

    def stats(self) -> tuple[dict[str, typ.Any], typ.Optional[np.ndarray]]:
        """
        Returns
        -------
        data: dict
            Current value of each ``log_var``.  (None if unknown.)
        history: numpy.ndarray, None
            Structured (N_iter,) array of stopping-criterion statistics, with an ``iteration`` field.  None if no
            record exists yet.
        """
        history = self._astate["history"]
        history = np.concatenate(history) if history else None
        data = {k: self._mstate.get(k) for k in self._astate["log_var"]}
        return data, history

    @property
    def status(self) -> SolverStatus:
        return self._astate["status"]

    @property
    def iteration(self) -> ppt.Integer:
        """Number of iterations completed in the current/last run."""
        return self._astate["idx"]

    @property
    def workdir(self) -> plib.Path:
        return self._astate["workdir"]

    @property
    def logfile(self) -> plib.Path:
        return self.workdir / "solver.log"

    @property
    def datafile(self) -> plib.Path:
        """Zarr group holding checkpointed ``log_var`` (s) and history."""
        return self.workdir / "data.zarr"

    def busy(self) -> bool:
        """
        True while a BLOCK/ASYNC-mode solver is iterating.
        """
        self._check_mode(SolverMode.ASYNC, SolverMode.BLOCK)
        return self._astate["active"].is_set()

    def solution(self):
        """
        Shortcut to the solver's main output.  (Sub-class dependent.)
        """
        raise NotImplementedError

    def stop(self):
        """
        Halt a BLOCK/ASYNC-mode solver.

        Blocks until the in-flight iteration completes.  A solver halted before its stopping criterion fired reports
        STOPPED_USER.  ASYNC-mode runs must always be terminated with this method: exceptions raised in the background
        surface here.
        """
        self._check_mode(SolverMode.ASYNC, SolverMode.BLOCK)
        self._astate["active"].clear()
        self._astate["worker"].join()
        self._astate.update(mode=None, active=None, worker=None)

        if (self._astate["status"] is SolverStatus.RUNNING) and (self._astate["error"] is None):
            self._astate["status"] = SolverStatus.STOPPED_USER
            self._astate["logger"].info(f"[{dt.datetime.now()}] Stopped by user -> END")
        self._close_logger()
        self._raise_if_failed()

    def writeback(self):
        """
        Checkpoint logged variables and history to :py:attr:`~proxpd.abc.Solver.datafile`.
        """
        data, history = self.stats()
        ppu.save_zarr(self.datafile, {"history": history, **data})

    def _fit_init(self, mode: SolverMode, stop_crit: StoppingCriterion):
        if stop_crit is None:
            stop_crit = self.default_stop_crit()
        stop_crit._reset()

        self._mstate.clear()
        self._astate.update(
            error=None,
            history=[],
            idx=0,
            status_prev=self._astate["status"],
            logger=_make_logger(
                name=str(self.workdir),
                logfile=self.logfile,
                stdout=(mode is SolverMode.BLOCK) and self._astate["stdout"],
            ),
            status=SolverStatus.RUNNING,
            stop_crit=stop_crit,
            mode=mode,
            active=None,
            worker=None,
        )

    def _fit_run(self):
        self._m_persist()

        mode = self._astate["mode"]
        if mode is SolverMode.MANUAL:
            return  # driven by steps()

        self._astate.update(active=threading.Event(), worker=Solver._Worker(self))
        self._astate["active"].set()
        self._astate["worker"].start()
        if mode is SolverMode.BLOCK:
            self._astate["worker"].join()
            self.stop()

    def _check_mode(self, *modes: SolverMode):
        m = self._astate["mode"]
        if m in modes:
            return
        if m is None:
            raise ValueError("Illegal method call: invoke Solver.fit() first.")
        allowed = ", ".join(_.name for _ in modes)
        raise ValueError(f"Illegal method call in mode={m.name}: requires mode in [{allowed}].")

    def _record(self):
        # Append stopping-criterion statistics of the current iteration to the history.
        ast = self._astate
        info = ast["stop_crit"].info()
        dtype = np.dtype([("iteration", np.int64)] + [(k, np.float64) for k in info])
        ast["history"].append(np.array([(ast["idx"], *info.values())], dtype=dtype))

    def _log_stats(self):
        ast = self._astate
        rec = ast["history"][-1][0]
        lines = [f"[{dt.datetime.now()}] Iteration {ast['idx']:>_d}"]
        lines.extend(f"\t{k}: {rec[k]}" for k in rec.dtype.names[1:])
        ast["logger"].info("\n".join(lines))

    def _resolve_status(self) -> SolverStatus:
        fired = {sc.status for sc in self._astate["stop_crit"].fired()}
        return next(
            (s for s in SolverStatus.precedence() if s in fired),
            SolverStatus.STOPPED_USER,
        )

    def _step(self) -> bool:
        # One turn of the solver loop: decide -> record -> log -> checkpoint -> iterate.
        # Returns False once the solver stopped (normally or not).
        ast = self._astate
        wb_rate = ast["wb_rate"]
        try:
            stop = ast["stop_crit"].decide(self._mstate)
            self._record()

            if stop:
                self._log_stats()
                ast["status"] = self._resolve_status()
                ast["logger"].info(f"[{dt.datetime.now()}] Stopping criterion satisfied ({ast['status'].name}) -> END")
                if wb_rate is not None:
                    self.writeback()
                return False

            if ast["idx"] % ast["log_rate"] == 0:
                self._log_stats()
            if wb_rate and (ast["idx"] % wb_rate == 0):
                self.writeback()
            ast["idx"] += 1
            self.m_step()
            self._m_persist()
            return True
        except Exception as e:
            msg = f"[{dt.datetime.now()}] Something went wrong -> EXCEPTION RAISED"
            if wb_rate:
                msg += f"\nLast valid checkpoint done at iteration={ast['idx'] - ast['idx'] % wb_rate}."
            ast["logger"].exception(msg, exc_info=e)
            ast["error"] = e
            return False

    def _fit_abort(self):
        # Undo _fit_init(): the solver is left as it was before the failed run, without partial iterates.
        self._close_logger()
        self._mstate.clear()
        self._astate.update(
            status=self._astate["status_prev"],
            mode=None,
            active=None,
            worker=None,
        )

    def _raise_if_failed(self):
        if (e := self._astate["error"]) is not None:
            self._astate["error"] = None
            self._fit_abort()
            raise e

    def _m_persist(self):
        # Evaluate DASK-backed math state once, so that iterations do not grow the task graph.
        if len(self._mstate) == 0:
            return
        k, v = zip(*self._mstate.items())
        v = ppu.compute(*v, mode="persist", traverse=False)  # _mstate may hold arbitrary objects
        if len(k) == 1:
            v = (v,)
        self._mstate.update(zip(k, v))

    def _close_logger(self):
        for handler in logging.getLogger(str(self.workdir)).handlers:
            handler.close()

    class _Worker(threading.Thread):
        def __init__(self, solver: "Solver"):
            super().__init__()
            self.slvr = solver

        def run(self):
            while self.slvr.busy() and self.slvr._step():
                pass
            self.slvr._astate["active"].clear()
