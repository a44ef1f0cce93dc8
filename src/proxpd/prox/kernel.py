r"""
Scalar proximal kernels.

Every kernel evaluates

.. math::

   x^{\star} = \arg\min_{x} h(x) + \frac{1}{2 \tau} (x - x_{0})^{2}

coordinate-wise.  Kernels are written once against the array API: they accept Python scalars and NUMPY/DASK/CUPY
arrays alike.  `tau`, `alpha` and `beta` may be scalars or arrays broadcastable against `x0`.
"""

import enum

import numpy as np

import proxpd.info.error as ppe
import proxpd.info.ptype as ppt
import proxpd.util as ppu

__all__ = [
    "Kernel",
]


def _zero(xp, x0, tau, alpha, beta):
    return x0 + xp.zeros_like(x0)


def _abs(xp, x0, tau, alpha, beta):
    zero = xp.zeros_like(x0)
    out = xp.where(x0 >= tau, x0 - tau, zero)
    out = xp.where(x0 <= -tau, x0 + tau, out)
    return out


def _square(xp, x0, tau, alpha, beta):
    return x0 / (1 + tau)


def _ind_leq0(xp, x0, tau, alpha, beta):
    return xp.where(x0 > 0, xp.zeros_like(x0), x0)


def _ind_geq0(xp, x0, tau, alpha, beta):
    return xp.where(x0 < 0, xp.zeros_like(x0), x0)


def _ind_eq0(xp, x0, tau, alpha, beta):
    return xp.zeros_like(x0)


def _ind_box01(xp, x0, tau, alpha, beta):
    return xp.clip(x0, 0, 1)


def _max_pos0(xp, x0, tau, alpha, beta):
    out = xp.where(x0 > tau, x0 - tau, xp.zeros_like(x0))
    out = xp.where(x0 < 0, x0, out)
    return out


def _l0(xp, x0, tau, alpha, beta):
    # alpha does not enter the threshold.
    return xp.where(x0 * x0 > 2 * tau, x0, xp.zeros_like(x0))


def _huber(xp, x0, tau, alpha, beta):
    if isinstance(tau, ppt.Real):
        if tau == 0:
            return x0 + xp.zeros_like(x0)
        r = (x0 / tau) / (1 + alpha / tau)
        r = r / xp.maximum(1, xp.abs(r))
        return x0 - tau * r

    pos = tau > 0
    t = xp.where(pos, tau, 1)  # avoid 0-division: tau=0 entries are masked below.
    r = (x0 / t) / (1 + alpha / t)
    r = r / xp.maximum(1, xp.abs(r))
    out = xp.where(pos, x0 - t * r, x0)
    return out


@enum.unique
class Kernel(enum.Enum):
    """
    Closed family of scalar prox kernels.

    ========= ======================== ===============================================================
    name      h(x)                     solution
    ========= ======================== ===============================================================
    zero      0                        x0
    abs       abs(x)                   soft-thresholding of x0 at tau
    square    x**2 / 2                 x0 / (1 + tau)
    ind_leq0  indicator of x <= 0      min(x0, 0)
    ind_geq0  indicator of x >= 0      max(x0, 0)
    ind_eq0   indicator of x == 0      0
    ind_box01 indicator of 0 <= x <= 1 clip(x0, 0, 1)
    max_pos0  max(x, 0)                x0 - tau if x0 > tau; x0 if x0 < 0; 0 otherwise
    l0        indicator of x != 0      hard-thresholding: x0 if x0**2 > 2 tau, 0 otherwise
    huber     Huber_alpha(x)           x0 - tau r, r = clip((x0/tau) / (1 + alpha/tau), -1, 1)
    ========= ======================== ===============================================================

    Example
    -------
    .. code-block:: python3

       import proxpd.prox as ppx

       k = ppx.Kernel.from_name("abs")
       k(1.5, tau=1)  # 0.5
    """

    ZERO = "zero"
    ABS = "abs"
    SQUARE = "square"
    IND_LEQ0 = "ind_leq0"
    IND_GEQ0 = "ind_geq0"
    IND_EQ0 = "ind_eq0"
    IND_BOX01 = "ind_box01"
    MAX_POS0 = "max_pos0"
    L0 = "l0"
    HUBER = "huber"

    @classmethod
    def from_name(cls, name: str) -> "Kernel":
        try:
            return cls(name.strip().lower())
        except Exception:
            choices = ", ".join(k.value for k in cls)
            raise ppe.InvalidParameter(f"Unknown prox kernel '{name}': expected one of [{choices}].")

    def indicator(self) -> bool:
        """
        True if `h` is the indicator function of a set, i.e. the kernel is a projection independent of `tau`.
        """
        return self in (
            Kernel.IND_LEQ0,
            Kernel.IND_GEQ0,
            Kernel.IND_EQ0,
            Kernel.IND_BOX01,
        )

    def __call__(
        self,
        x0: ppt.Param,
        tau: ppt.Param,
        alpha: ppt.Param = 0,
        beta: ppt.Param = 0,
    ) -> ppt.Param:
        """
        Evaluate the kernel.

        Python scalars in, Python float out.  Arrays are processed coordinate-wise and never modified in place.
        """
        scalar = isinstance(x0, ppt.Real)
        if scalar:
            x0 = np.asarray(x0, dtype=np.double)
        xp = ppu.get_array_module(x0, fallback=np)
        out = _impl[self](xp, x0, tau, alpha, beta)
        return float(out) if scalar else out


_impl = {
    Kernel.ZERO: _zero,
    Kernel.ABS: _abs,
    Kernel.SQUARE: _square,
    Kernel.IND_LEQ0: _ind_leq0,
    Kernel.IND_GEQ0: _ind_geq0,
    Kernel.IND_EQ0: _ind_eq0,
    Kernel.IND_BOX01: _ind_box01,
    Kernel.MAX_POS0: _max_pos0,
    Kernel.L0: _l0,
    Kernel.HUBER: _huber,
}
