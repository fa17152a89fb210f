from typing import Optional

from rtr.core.constants import (
    CLASS_ID_PREFIX,
    COMPACT_ID_LENGTH,
    EXTENDED_ID_LENGTH,
    ID_MATCH_PREFIX_LENGTH,
    TEST_RUN_ID_PREFIX,
)

VALID_ID_LENGTHS = (COMPACT_ID_LENGTH, EXTENDED_ID_LENGTH)


def is_valid_test_run_id(run_id: Optional[str]) -> bool:
    return (
        isinstance(run_id, str)
        and len(run_id) in VALID_ID_LENGTHS
        and run_id.startswith(TEST_RUN_ID_PREFIX)
    )


def is_valid_apex_class_id(class_id: Optional[str]) -> bool:
    return (
        isinstance(class_id, str)
        and len(class_id) in VALID_ID_LENGTHS
        and class_id.startswith(CLASS_ID_PREFIX)
    )


def run_ids_match(first: str, second: str) -> bool:
    """Compare two ids of either length by their shared leading characters.

    An extended id carries a checksum suffix, so it matches its compact form.
    """
    return first[:ID_MATCH_PREFIX_LENGTH] == second[:ID_MATCH_PREFIX_LENGTH]
