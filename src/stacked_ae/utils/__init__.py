from .config_utils import ConfigNamespace, flatten_dict, to_namespace
from .tensor_ops import (
    as_float_tensor,
    as_matrix,
    check_finite_parameters,
    flatten,
    fork_seed,
    seeded_generator,
    unflatten,
)
