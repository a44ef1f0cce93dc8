import logging

import zarr

import proxpd.info.deps as ppd
import proxpd.info.ptype as ppt
import proxpd.util.array_module as ppam

__all__ = [
    "save_zarr",
]


def save_zarr(filedir: ppt.Path, kw_in: dict[str, ppt.NDArray]) -> None:
    """
    Write named arrays as Zarr arrays under `filedir`.

    DASK arrays are written chunk-wise under ``dask_<name>``.  Other backends are copied to the host first.  None-valued
    entries are skipped.  Arrays which fail to save are logged as warnings and do not raise.
    """
    logger = logging.getLogger(__name__)
    for name, arr in kw_in.items():
        if arr is None:
            continue
        try:
            if ppd.NDArrayInfo.from_obj(arr) == ppd.NDArrayInfo.DASK:
                arr.to_zarr(str(filedir / f"dask_{name}"), overwrite=True, compute=True)
            else:
                zarr.save(str(filedir / name), ppam.to_NUMPY(arr))
        except Exception as e:
            logger.warning(f"Failed to save {name}: {e}")
