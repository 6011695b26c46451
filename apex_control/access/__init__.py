"""Access policy evaluator.

- ``AccessPolicy`` / ``can``: role to capability checks.
- ``mask_object_for_actor`` / ``can_write_field``: field-level restrictions.
"""

from .fields import REDACTED, can_write_field, mask_object_for_actor
from .rbac import DEFAULT_ROLE_CAPABILITIES, AccessPolicy, can

__all__ = [
    "AccessPolicy",
    "DEFAULT_ROLE_CAPABILITIES",
    "REDACTED",
    "can",
    "can_write_field",
    "mask_object_for_actor",
]
