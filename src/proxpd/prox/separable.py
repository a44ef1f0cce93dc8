import collections.abc as cabc

import proxpd.abc as ppa
import proxpd.info.error as ppe
import proxpd.info.ptype as ppt
import proxpd.runtime as pprt
import proxpd.util as ppu

__all__ = [
    "ProxSeparable",
]


class ProxSeparable(ppa.ProxOp):
    r"""
    Separable sum :math:`\sum_{k} h_{k}(\mathbf{x}_{[i_{k}, i_{k} + n_{k})})` of proximal operators acting on disjoint
    coordinate ranges.

    Member ranges must tile ``[0, size)`` exactly: gaps and overlaps are rejected.  Members with diagonal steps receive
    their slice of `tau_diag`; the others receive the scalar step of their first coordinate.
    """

    def __init__(
        self,
        ops: cabc.Sequence[ppa.ProxOp],
        size: ppt.Integer = None,
    ):
        """
        Parameters
        ----------
        ops: ~collections.abc.Sequence[ProxOp]
            Members of the partition, in any order.
        size: Integer
            Dimension of the coordinate vector.  Inferred from the members if unspecified.

        Raises
        ------
        InvalidParameter
            If the member ranges do not partition ``[0, size)``.
        """
        ops = list(ops)
        try:
            assert len(ops) > 0
            assert all(isinstance(op, ppa.ProxOp) for op in ops)
        except Exception:
            raise ppe.InvalidParameter("ops: expected non-empty sequence of ProxOp.")
        ops = sorted(ops, key=lambda op: op.index)

        N = max(op.end for op in ops) if (size is None) else int(size)
        pos = 0
        for op in ops:
            if op.index < pos:
                raise ppe.InvalidParameter(f"{op} overlaps coordinates [{op.index}, {pos}).")
            elif op.index > pos:
                raise ppe.InvalidParameter(f"Coordinates [{pos}, {op.index}) are not covered by any operator.")
            pos = op.end
        if pos != N:
            if pos < N:
                raise ppe.InvalidParameter(f"Coordinates [{pos}, {N}) are not covered by any operator.")
            else:
                raise ppe.InvalidParameter(f"Operators cover [0, {pos}), exceeding size={N}.")

        super().__init__(index=0, size=N, diagsteps=True)
        self._ops = tuple(ops)

    @property
    def ops(self) -> tuple[ppa.ProxOp]:
        return self._ops

    def _init(self, ctx: pprt.Context):
        for op in self._ops:
            op.initialize(ctx)

    def release(self):
        for op in self._ops:
            op.release()
        super().release()

    def _prox(self, arr, tau, tau_diag, invert_tau):
        parts = []
        for op in self._ops:
            x = arr[..., op.index : op.end]
            if tau_diag is None:
                y = op.prox(x, tau)
            elif op.diagsteps:
                y = op.prox(x, tau, tau_diag[op.index : op.end], invert_tau)
            else:
                t = float(tau_diag[op.index])
                y = op.prox(x, (tau / t) if invert_tau else (tau * t))
            parts.append(y)

        xp = ppu.get_array_module(arr)
        out = xp.concatenate(parts, axis=-1)
        return out

    def separable_structure(self) -> list[tuple[int, int, int]]:
        groups = []
        for op in self._ops:
            groups.extend(op.separable_structure())
        return groups

    def __repr__(self) -> str:
        return f"ProxSeparable(size={self._size}, ops={list(self._ops)})"
