import time

import numpy as np
import pytest

import proxpd.abc as ppa
import proxpd.info.error as ppe
import proxpd.info.warning as ppw
import proxpd.linop as ppl
import proxpd.opt.solver as ppsl
import proxpd.opt.stop as ppst
import proxpd.problem as ppp
import proxpd.prox as ppx
import proxpd.runtime as pprt
import proxpd_tests.conftest as ct

S = ppa.SolverStatus


def soft(b, lmb):
    return np.sign(b) * np.maximum(np.abs(b) - lmb, 0)


def lasso(b: np.ndarray, lmb: float) -> ppp.Problem:
    # g(x) = lmb |x| + 0.5 x**2 - b x, f = 0, K = I  =>  x* = soft(b, lmb)
    N = len(b)
    g = ppx.ProxTransform(ppx.ProxElemwise("abs", 0, N), c=lmb, d=-b, e=1)
    fstar = ppx.ProxElemwise("ind_eq0", 0, N)
    K = ppl.LinearOperator([ppl.IdentityBlock(0, 0, N)])
    return ppp.Problem(K, [g], [fstar])


def nonneg_projection(b: np.ndarray) -> ppp.Problem:
    # g(x) = 0.5 (x - b)**2, f = indicator of x >= 0, K = I  =>  x* = max(b, 0)
    N = len(b)
    g = ppx.ProxTransform(ppx.ProxElemwise("square", 0, N), b=-b)
    fstar = ppx.ProxMoreau(ppx.ProxElemwise("ind_geq0", 0, N))
    K = ppl.LinearOperator([ppl.IdentityBlock(0, 0, N)])
    return ppp.Problem(K, [g], [fstar])


@pytest.fixture
def b() -> np.ndarray:
    return np.r_[-3, -0.5, 0.2, 1, 2.5]


@pytest.fixture
def folder(tmp_path):
    return tmp_path / "slvr"


class TestPDHGConvergence:
    def test_lasso(self, b, folder, ctx):
        tol = {pprt.Width.SINGLE: 1e-5, pprt.Width.DOUBLE: 1e-8}[ctx.width]
        slvr = ppsl.PDHG(lasso(b, 1), tol=tol, folder=folder, show_progress=False)
        res = slvr.initialize(ctx=ctx).solve()

        assert res.status is S.CONVERGED
        assert slvr.iteration < 1000
        assert ct.allclose(res.x, soft(b, 1), ctx.dtype)
        assert ct.allclose(res.Kx, res.x, ctx.dtype)
        assert res.x.dtype == ctx.dtype
        slvr.release()

    def test_lasso_precond_off(self, b, folder):
        slvr = ppsl.PDHG(lasso(b, 0.5), tol=1e-8, precond="off", folder=folder, show_progress=False)
        res = slvr.initialize().solve()
        assert res.status is S.CONVERGED
        assert np.allclose(res.x, soft(b, 0.5), atol=1e-6)

    @pytest.mark.parametrize("precond_power", [0, 1, 2])
    def test_conjugate_constraint(self, b, folder, precond_power):
        slvr = ppsl.PDHG(
            nonneg_projection(b),
            tol=1e-9,
            precond_power=precond_power,
            folder=folder,
            show_progress=False,
        )
        res = slvr.initialize().solve()
        assert res.status is S.CONVERGED
        assert np.allclose(res.x, np.maximum(b, 0), atol=1e-6)
        # KKT: x - b + y = 0
        assert np.allclose(res.x - b + res.y, 0, atol=1e-6)

    def test_warm_start(self, b, folder):
        slvr = ppsl.PDHG(lasso(b, 1), tol=1e-8, folder=folder, show_progress=False).initialize()
        res = slvr.solve(x0=soft(b, 1), y0=np.zeros(5))
        assert res.status is S.CONVERGED
        assert slvr.iteration <= 10  # residuals are first evaluated at iteration 10

    def test_manual_mode(self, b, folder):
        slvr = ppsl.PDHG(lasso(b, 1), tol=1e-8, folder=folder).initialize()
        slvr.fit(mode=ppa.SolverMode.MANUAL)
        n = 0
        for data in slvr.steps():
            assert set(data) == {"x", "y"}
            n += 1
        assert n == slvr.iteration
        assert slvr.status is S.CONVERGED
        assert np.allclose(slvr.solution(), soft(b, 1), atol=1e-6)
        assert np.allclose(slvr.solution("dual"), 0)


class TestPDHGStatus:
    def test_max_iter(self, b, folder):
        slvr = ppsl.PDHG(lasso(b, 1), max_iter=10, tol=0, folder=folder, show_progress=False).initialize()
        res = slvr.solve()
        assert res.status is S.STOPPED_MAX_ITERS
        assert slvr.iteration == 10

    def test_cancel(self, b, folder):
        calls = []

        def cancel():
            calls.append(1)
            return True

        slvr = ppsl.PDHG(lasso(b, 1), folder=folder, show_progress=False).initialize(cancel=cancel)
        res = slvr.solve()
        assert res.status is S.STOPPED_USER
        assert slvr.iteration == 1
        assert len(calls) == 1

        # iterate after exactly one iteration: x1 = prox_g(x0) with unit step.
        x1 = soft(b / 2, 0.5)
        assert np.allclose(res.x, x1)

    def test_max_iter_precedes_cancel(self, b, folder):
        slvr = ppsl.PDHG(lasso(b, 1), max_iter=1, tol=0, folder=folder, show_progress=False)
        res = slvr.initialize(cancel=lambda: True).solve()
        assert res.status is S.STOPPED_MAX_ITERS
        assert slvr.iteration == 1

    def test_converged_precedes_max_iter(self, b, folder):
        slvr = ppsl.PDHG(lasso(b, 1), max_iter=1, tol=1e3, residual_rate=1, folder=folder, show_progress=False)
        res = slvr.initialize().solve()
        assert res.status is S.CONVERGED
        assert slvr.iteration == 1

    def test_separate_tolerances(self, b, folder):
        kw = dict(max_iter=5, residual_rate=1, folder=folder, show_progress=False)
        slvr = ppsl.PDHG(lasso(b, 1), tol=0, tol_primal=1e3, tol_dual=1e3, **kw)
        assert slvr.options()["tol"] == 0
        res = slvr.initialize().solve()
        assert res.status is S.CONVERGED
        assert slvr.iteration == 1

        # unreachable dual threshold
        slvr = ppsl.PDHG(lasso(b, 1), tol=1e3, tol_dual=0, **kw)
        assert (slvr.options()["tol_primal"], slvr.options()["tol_dual"]) == (1e3, 0)
        res = slvr.initialize().solve()
        assert res.status is S.STOPPED_MAX_ITERS
        _, hist = slvr.stats()
        assert np.all(hist["r_primal"][1:] < 1e3)

    def test_lifecycle(self, b, folder):
        slvr = ppsl.PDHG(lasso(b, 1), max_iter=5, folder=folder, show_progress=False)
        assert slvr.status is S.UNINITIALIZED
        slvr.initialize()
        assert slvr.status is S.READY
        slvr.solve()
        assert slvr.status.terminal()
        slvr.release()
        assert slvr.status is S.RELEASED
        slvr.release()
        assert slvr.status is S.RELEASED

    def test_reinitialize_after_release(self, b, folder):
        slvr = ppsl.PDHG(lasso(b, 1), max_iter=3, tol=0, folder=folder, show_progress=False)
        slvr.initialize().solve()
        slvr.release()
        res = slvr.initialize().solve()
        assert res.status is S.STOPPED_MAX_ITERS

    def test_async_stop(self, b, folder):
        slvr = ppsl.PDHG(lasso(b, 1), folder=folder).initialize()
        slvr.fit(mode=ppa.SolverMode.ASYNC, stop_crit=ppst.ManualStop())
        time.sleep(0.05)
        slvr.stop()
        assert slvr.status is S.STOPPED_USER

    def test_release_while_async(self, b, folder):
        slvr = ppsl.PDHG(lasso(b, 1), folder=folder).initialize()
        slvr.fit(mode=ppa.SolverMode.ASYNC, stop_crit=ppst.ManualStop())
        slvr.release()
        assert slvr.status is S.RELEASED
        assert not slvr.problem.linop.initialized


class TestPDHGHooks:
    def test_callback(self, b, folder):
        seen = []

        def callback(it, x, y):
            assert not x.flags.writeable
            assert x.shape == (5,) and y.shape == (5,)
            seen.append(it)

        slvr = ppsl.PDHG(lasso(b, 1), max_iter=7, tol=0, folder=folder, show_progress=False)
        slvr.initialize(callback=callback, callback_rate=3).solve()
        assert seen == [3, 6]

    def test_callback_copies(self, b, folder):
        xs = []
        slvr = ppsl.PDHG(lasso(b, 1), max_iter=3, tol=0, folder=folder, show_progress=False)
        res = slvr.initialize(callback=lambda it, x, y: xs.append(x)).solve()
        assert len(xs) == 3
        assert np.allclose(xs[-1], res.x)
        assert not np.shares_memory(xs[-1], res.x)

    def test_exception_reraised(self, b, folder):
        def callback(it, x, y):
            raise RuntimeError("callback failure")

        slvr = ppsl.PDHG(lasso(b, 1), folder=folder, show_progress=False)
        slvr.initialize(callback=callback)
        with pytest.raises(RuntimeError, match="callback failure"):
            slvr.solve()
        assert "EXCEPTION RAISED" in slvr.logfile.read_text()
        assert slvr.status is S.READY
        with pytest.raises(ValueError):
            slvr.result()  # no partial iterates
        slvr.release()
        assert slvr.status is S.RELEASED

    def test_logfile(self, b, folder):
        slvr = ppsl.PDHG(lasso(b, 1), max_iter=2, tol=0, folder=folder, show_progress=False)
        slvr.initialize().solve()
        log = slvr.logfile.read_text()
        assert "PDHG: shape=(5, 5)" in log
        assert "STOPPED_MAX_ITERS" in log

    def test_history(self, b, folder):
        slvr = ppsl.PDHG(lasso(b, 1), max_iter=3, tol=0, folder=folder, show_progress=False)
        slvr.initialize().solve()
        _, hist = slvr.stats()
        assert hist["iteration"].tolist() == [0, 1, 2, 3]
        assert {"N_iter", "r_primal", "r_dual"} <= set(hist.dtype.names)

    def test_writeback(self, b, folder):
        slvr = ppsl.PDHG(lasso(b, 1), max_iter=2, tol=0, writeback_rate=0, folder=folder, show_progress=False)
        slvr.initialize().solve()
        assert (slvr.datafile / "x").exists()


class TestPDHGErrors:
    def test_not_initialized(self, b, folder):
        slvr = ppsl.PDHG(lasso(b, 1), folder=folder)
        with pytest.raises(ppe.NotInitialized):
            slvr.solve()
        with pytest.raises(ppe.NotInitialized):
            slvr.result()

    def test_solve_after_release(self, b, folder):
        slvr = ppsl.PDHG(lasso(b, 1), folder=folder).initialize()
        slvr.release()
        with pytest.raises(ppe.NotInitialized):
            slvr.solve()

    @pytest.mark.parametrize("x0", [np.zeros(4), np.zeros((2, 5))])
    def test_initial_point_mismatch(self, b, folder, x0):
        slvr = ppsl.PDHG(lasso(b, 1), folder=folder, show_progress=False).initialize()
        with pytest.raises(ppe.DimensionMismatch):
            slvr.solve(x0=x0)
        assert slvr.status is S.READY

    def test_rerun_after_bad_initial_point(self, b, folder):
        slvr = ppsl.PDHG(lasso(b, 1), tol=1e-8, folder=folder, show_progress=False).initialize()
        with pytest.raises(ppe.DimensionMismatch):
            slvr.solve(x0=np.zeros(4))
        assert slvr.status is S.READY
        with pytest.raises(ValueError):
            slvr.busy()  # run-mode cleared

        res = slvr.initialize().solve()
        assert res.status is S.CONVERGED
        assert np.allclose(res.x, soft(b, 1), atol=1e-6)

    def test_initialize_while_running(self, b, folder):
        slvr = ppsl.PDHG(lasso(b, 1), folder=folder).initialize()
        slvr.fit(mode=ppa.SolverMode.MANUAL)
        assert slvr.status is S.RUNNING
        with pytest.raises(ppe.SolverBusy):
            slvr.initialize()
        slvr.release()
        assert slvr.status is S.RELEASED

    @pytest.mark.parametrize(
        "kwargs",
        [
            dict(max_iter=0),
            dict(tol=-1),
            dict(tol_primal=-1),
            dict(tol=1e-3, tol_dual=None, tol_primal="x"),
            dict(tol=None),
            dict(residual_rate=0),
            dict(theta=2),
            dict(precond="beta"),
            dict(precond_power=3),
        ],
    )
    def test_invalid_options(self, b, folder, kwargs):
        with pytest.raises(ppe.InvalidParameter):
            ppsl.PDHG(lasso(b, 1), folder=folder, **kwargs)

    @pytest.mark.parametrize(
        "kwargs",
        [
            dict(callback=1),
            dict(cancel=True),
            dict(callback_rate=0),
        ],
    )
    def test_invalid_hooks(self, b, folder, kwargs):
        slvr = ppsl.PDHG(lasso(b, 1), folder=folder)
        with pytest.raises(ppe.InvalidParameter):
            slvr.initialize(**kwargs)

    def test_empty_rows_warn(self, folder):
        K = ppl.LinearOperator([ppl.IdentityBlock(0, 0, 2)], nrows=3)
        problem = ppp.Problem(
            K,
            [ppx.ProxElemwise("square", 0, 2)],
            [ppx.ProxElemwise("ind_eq0", 0, 3)],
        )
        slvr = ppsl.PDHG(problem, folder=folder)
        with pytest.warns(ppw.PreconditionWarning):
            slvr.initialize()
