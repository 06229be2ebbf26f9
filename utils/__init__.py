# Utility modules for celltrace
from .validation import (
    validate_latitude,
    validate_longitude,
    validate_cell_key,
)
