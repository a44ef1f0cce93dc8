"""
Build proximal operators and linear-operator blocks from plain descriptors.

Descriptors are :py:func:`~collections.namedtuple` instances, plain tuples in the same field order, or mappings with
the same keys:

* ``ProxSpec(kind, index, size, diagsteps, params)``, where `kind` is a kernel name (see
  :py:class:`~proxpd.prox.Kernel`) or one of "moreau", "permute", "transform", "norm2".  Kernel descriptors accept
  `alpha`, `beta` and the affine parameters `a`, ..., `e` of :py:class:`~proxpd.prox.ProxTransform`.  Decorators take
  their inner descriptor under the `inner` key.
* ``BlockSpec(row, nrows, col, ncols, kind, params)``, where `kind` is one of "zero", "identity", "diags", "sparse",
  "dense", "gradient2d".

Example
-------
.. code-block:: python3

   import proxpd.factory as ppf

   # 0.5 * (x - f)^2 on [0, 100), via the transform parameters of the 'square' kernel.
   g = ppf.make_prox(ppf.ProxSpec("square", 0, 100, False, dict(b=-f)))

   # Conjugate of lambda * |.| on [0, 200).
   fstar = ppf.make_prox(
       ppf.ProxSpec("moreau", 0, 200, False, dict(inner=ppf.ProxSpec("abs", 0, 200, False, dict(c=lmb))))
   )
"""

import collections
import collections.abc as cabc

import proxpd.abc as ppa
import proxpd.info.error as ppe
import proxpd.linop as ppl
import proxpd.prox as ppx

__all__ = [
    "BlockSpec",
    "ProxSpec",
    "make_block",
    "make_prox",
]

ProxSpec = collections.namedtuple(
    "ProxSpec",
    "kind index size diagsteps params",
    defaults=(False, None),
)

BlockSpec = collections.namedtuple(
    "BlockSpec",
    "row nrows col ncols kind params",
    defaults=(None,),
)

_AFFINE = ("a", "b", "c", "d", "e")


def _as_spec(desc, klass):
    if isinstance(desc, klass):
        return desc
    try:
        if isinstance(desc, cabc.Mapping):
            return klass(**desc)
        else:
            return klass(*desc)
    except Exception:
        raise ppe.InvalidParameter(f"Cannot interpret {desc!r} as {klass.__name__}.")


def _params(spec, allowed: cabc.Collection[str]) -> dict:
    params = dict() if (spec.params is None) else dict(spec.params)
    if unknown := set(params) - set(allowed):
        raise ppe.InvalidParameter(f"{spec.kind}: unknown parameters {sorted(unknown)}.")
    return params


def _inner(spec, params: dict) -> ppa.ProxOp:
    try:
        inner = make_prox(params.pop("inner"))
    except KeyError:
        raise ppe.InvalidParameter(f"{spec.kind}: missing 'inner' descriptor.")
    if (inner.index, inner.size) != (spec.index, spec.size):
        msg = " ".join(
            [
                f"{spec.kind}: range (index={spec.index}, size={spec.size}) disagrees with",
                f"inner range (index={inner.index}, size={inner.size}).",
            ]
        )
        raise ppe.InvalidParameter(msg)
    return inner


def make_prox(desc) -> ppa.ProxOp:
    """
    Build a proximal operator from its descriptor.

    Parameters
    ----------
    desc: ProxSpec, tuple, ~collections.abc.Mapping
        Operator descriptor.

    Returns
    -------
    op: ProxOp

    Raises
    ------
    InvalidParameter
        If the descriptor is malformed.
    """
    if isinstance(desc, ppa.ProxOp):
        return desc
    spec = _as_spec(desc, ProxSpec)
    kind = str(spec.kind).strip().lower()

    if kind == "moreau":
        params = _params(spec, {"inner"})
        op = ppx.ProxMoreau(_inner(spec, params))
    elif kind == "permute":
        params = _params(spec, {"inner", "perm"})
        op = ppx.ProxPermute(_inner(spec, params), perm=params.get("perm"))
    elif kind == "transform":
        params = _params(spec, {"inner", *_AFFINE})
        op = ppx.ProxTransform(_inner(spec, params), **params)
    elif kind == "norm2":
        params = _params(spec, {"kernel", "count", "dim", "interleaved", "alpha", "beta", *_AFFINE})
        affine = {k: params.pop(k) for k in _AFFINE if k in params}
        dim = int(params.pop("dim", 1))
        count = int(params.pop("count", spec.size // dim))
        if count * dim != spec.size:
            raise ppe.InvalidParameter(f"norm2: count({count}) x dim({dim}) != size({spec.size}).")
        op = ppx.ProxNorm2(
            kernel=params.pop("kernel", "zero"),
            index=spec.index,
            count=count,
            dim=dim,
            diagsteps=spec.diagsteps,
            **params,
        )
        if affine:
            op = ppx.ProxTransform(op, **affine)
    else:
        params = _params(spec, {"alpha", "beta", *_AFFINE})
        affine = {k: params.pop(k) for k in _AFFINE if k in params}
        op = ppx.ProxElemwise(
            kernel=kind,
            index=spec.index,
            size=spec.size,
            diagsteps=spec.diagsteps,
            **params,
        )
        if affine:
            op = ppx.ProxTransform(op, **affine)
    return op


def make_block(desc) -> ppa.Block:
    """
    Build a linear-operator block from its descriptor.

    Parameters
    ----------
    desc: BlockSpec, tuple, ~collections.abc.Mapping
        Block descriptor.

    Returns
    -------
    blk: Block

    Raises
    ------
    InvalidParameter
        If the descriptor is malformed, or if the block built from `params` disagrees with (nrows, ncols).
    """
    if isinstance(desc, ppa.Block):
        return desc
    spec = _as_spec(desc, BlockSpec)
    kind = str(spec.kind).strip().lower()
    params = dict() if (spec.params is None) else dict(spec.params)
    r, c = spec.row, spec.col

    try:
        if kind == "zero":
            blk = ppl.ZeroBlock(r, c, spec.nrows, spec.ncols)
        elif kind == "identity":
            if spec.nrows != spec.ncols:
                raise ppe.InvalidParameter(f"identity: expected square block, got {(spec.nrows, spec.ncols)}.")
            blk = ppl.IdentityBlock(r, c, size=spec.nrows, **params)
        elif kind == "diags":
            blk = ppl.DiagsBlock(r, c, spec.nrows, spec.ncols, **params)
        elif kind == "sparse":
            blk = ppl.SparseBlock(r, c, **params)
        elif kind == "dense":
            blk = ppl.DenseBlock(r, c, **params)
        elif kind == "gradient2d":
            blk = ppl.Gradient2DBlock(r, c, **params)
        else:
            raise ppe.InvalidParameter(f"Unknown block kind '{spec.kind}'.")
    except TypeError as e:
        raise ppe.InvalidParameter(f"{kind}: invalid parameters {sorted(params)}.") from e

    if blk.shape != (spec.nrows, spec.ncols):
        msg = f"{kind}: parameters describe a {blk.shape} block, expected {(spec.nrows, spec.ncols)}."
        raise ppe.InvalidParameter(msg)
    return blk
