"""Utility modules."""
from assess.utils.json_utils import (
    json_dump,
    json_load,
    read_json_file,
    write_json_file,
)
from assess.utils.time_utils import (
    ensure_utc,
    format_remaining,
    utc_now,
)
from assess.utils.validation import validate_id

__all__ = [
    "json_dump",
    "json_load",
    "read_json_file",
    "write_json_file",
    "ensure_utc",
    "format_remaining",
    "utc_now",
    "validate_id",
]
