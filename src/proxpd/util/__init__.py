from .array_module import (
    compute as compute,
    get_array_module as get_array_module,
    parse_params as parse_params,
    redirect as redirect,
    to_NUMPY as to_NUMPY,
)
from .io import (
    save_zarr as save_zarr,
)
from .misc import (
    as_param as as_param,
    check_size as check_size,
    read_only as read_only,
)
