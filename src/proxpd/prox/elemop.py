import typing as typ

import proxpd.abc as ppa
import proxpd.info.error as ppe
import proxpd.info.ptype as ppt
import proxpd.prox.kernel as ppk
import proxpd.runtime as pprt
import proxpd.util as ppu

__all__ = [
    "ProxElemwise",
    "ProxNorm2",
]


def _as_kernel(kernel: typ.Union[str, ppk.Kernel]) -> ppk.Kernel:
    if isinstance(kernel, ppk.Kernel):
        return kernel
    elif isinstance(kernel, str):
        return ppk.Kernel.from_name(kernel)
    else:
        raise ppe.InvalidParameter(f"kernel: expected str/Kernel, got {type(kernel)}.")


class ProxElemwise(ppa.ProxOp):
    r"""
    Coordinate-wise proximal operator :math:`\mathbf{prox}_{\tau h}(\mathbf{x})_{i} = \text{kernel}(x_{i}, \tau_{i},
    \alpha_{i}, \beta_{i})`.

    Example
    -------
    .. code-block:: python3

       import numpy as np
       import proxpd.prox as ppx

       op = ppx.ProxElemwise("abs", index=0, size=3).initialize()
       op.prox(np.r_[-2, 0.5, 3], tau=1)  # [-1, 0, 2]
    """

    def __init__(
        self,
        kernel: typ.Union[str, ppk.Kernel],
        index: ppt.Integer = 0,
        size: ppt.Integer = 1,
        diagsteps: bool = False,
        alpha: ppt.Param = 0,
        beta: ppt.Param = 0,
    ):
        """
        Parameters
        ----------
        kernel: str, Kernel
            Scalar kernel applied to each coordinate.
        index, size, diagsteps
            See :py:class:`~proxpd.abc.ProxOp`.
        alpha, beta: Real, NDArray
            Kernel parameters: scalars or (size,) vectors.
        """
        super().__init__(index=index, size=size, diagsteps=diagsteps)
        self._kernel = _as_kernel(kernel)
        self._alpha = ppu.as_param(alpha, self._size, name="alpha")
        self._beta = ppu.as_param(beta, self._size, name="beta")
        self._param = (self._alpha, self._beta)

    @property
    def kernel(self) -> ppk.Kernel:
        return self._kernel

    def _init(self, ctx: pprt.Context):
        self._param = tuple(p if isinstance(p, float) else ctx.asarray(p) for p in (self._alpha, self._beta))

    def _prox(self, arr, tau, tau_diag, invert_tau):
        step = self._step(tau, tau_diag, invert_tau)
        alpha, beta = self._param
        return self._kernel(arr, step, alpha, beta)

    def __repr__(self) -> str:
        head = f"ProxElemwise[{self._kernel.value}]"
        return f"{head}(index={self._index}, size={self._size}, diagsteps={self._diagsteps})"


class ProxNorm2(ppa.ProxOp):
    r"""
    Proximal operator of :math:`\sum_{g} h(\Vert \mathbf{x}_{g} \Vert_{2})`, where :math:`\mathbf{x}_{g}` are `count`
    groups of `dim` coordinates.

    The prox of each group is obtained by applying the scalar kernel to the group norm:

    .. math::

       \mathbf{prox}_{\tau h \circ \Vert\cdot\Vert_{2}}(\mathbf{v}) = \frac{\text{kernel}(\Vert \mathbf{v} \Vert_{2},
       \tau)}{\Vert \mathbf{v} \Vert_{2}} \mathbf{v},

    with the convention that groups of zero norm map to zero.

    Group layout:

    * interleaved: group `g` holds coordinates ``g * dim + [0, dim)``, i.e. ``[x1 y1 x2 y2 ...]``;
    * planar (default): group `g` holds coordinates ``g + count * [0, dim)``, i.e. ``[x1 x2 ... y1 y2 ...]``.

    All coordinates of a group share one step size, namely the one of the group's first coordinate.
    """

    def __init__(
        self,
        kernel: typ.Union[str, ppk.Kernel],
        index: ppt.Integer = 0,
        count: ppt.Integer = 1,
        dim: ppt.Integer = 1,
        interleaved: bool = False,
        diagsteps: bool = False,
        alpha: ppt.Param = 0,
        beta: ppt.Param = 0,
    ):
        """
        Parameters
        ----------
        kernel: str, Kernel
            Scalar kernel applied to group norms.
        index: Integer
            First coordinate the operator acts on.
        count: Integer
            Number of groups.
        dim: Integer
            Number of coordinates per group.
        interleaved: bool
            Group layout.  (See class docstring.)
        diagsteps: bool
            See :py:class:`~proxpd.abc.ProxOp`.
        alpha, beta: Real, NDArray
            Kernel parameters: scalars or (count,) vectors.
        """
        try:
            assert int(count) == count and count >= 1
            assert int(dim) == dim and dim >= 1
        except Exception:
            raise ppe.InvalidParameter(f"(count, dim): expected positive integers, got ({count}, {dim}).")
        super().__init__(index=index, size=int(count) * int(dim), diagsteps=diagsteps)
        self._kernel = _as_kernel(kernel)
        self._count = int(count)
        self._dim = int(dim)
        self._interleaved = bool(interleaved)
        self._alpha = ppu.as_param(alpha, self._count, name="alpha")
        self._beta = ppu.as_param(beta, self._count, name="beta")
        self._param = (self._alpha, self._beta)

    @property
    def count(self) -> ppt.Integer:
        return self._count

    @property
    def dim(self) -> ppt.Integer:
        return self._dim

    @property
    def interleaved(self) -> bool:
        return self._interleaved

    def _init(self, ctx: pprt.Context):
        self._param = tuple(p if isinstance(p, float) else ctx.asarray(p) for p in (self._alpha, self._beta))

    def _prox(self, arr, tau, tau_diag, invert_tau):
        xp = ppu.get_array_module(arr)
        sh = arr.shape[:-1]
        C, D = self._count, self._dim

        if tau_diag is not None:  # one step per group
            tau_diag = tau_diag[::D] if self._interleaved else tau_diag[:C]
        step = self._step(tau, tau_diag, invert_tau)

        if self._interleaved:
            v = arr.reshape(*sh, C, D)
            axis = -1
        else:
            v = arr.reshape(*sh, D, C)
            axis = -2

        n = xp.sqrt(xp.sum(v**2, axis=axis))  # (..., C)
        alpha, beta = self._param
        k = self._kernel(n, step, alpha, beta)
        scale = xp.where(n > 0, k / xp.where(n > 0, n, 1), xp.zeros_like(n))
        out = v * xp.expand_dims(scale, axis)
        return out.reshape(*sh, self._size)

    def separable_structure(self) -> list[tuple[int, int, int]]:
        if not self._diagsteps:
            return super().separable_structure()
        elif self._interleaved:
            return [(self._index + g * self._dim, self._dim, 1) for g in range(self._count)]
        else:
            return [(self._index + g, self._dim, self._count) for g in range(self._count)]

    def __repr__(self) -> str:
        return " ".join(
            [
                f"ProxNorm2[{self._kernel.value}](index={self._index}, count={self._count}, dim={self._dim},",
                f"interleaved={self._interleaved}, diagsteps={self._diagsteps})",
            ]
        )
