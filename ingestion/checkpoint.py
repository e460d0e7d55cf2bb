"""
Watermark persistence for incremental imports.

The state file is a small JSON document per source. Loading never fails:
a missing, unreadable or foreign state file simply means "import
everything". Saving writes to a temporary file first and renames it over
the old one so an interrupted run never leaves a truncated document.
"""

from pathlib import Path
from typing import Union
from pydantic import ValidationError
from schemas.watermark import Watermark
from core.exceptions import CheckpointError
import logging
import os
import tempfile

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def load_watermark(path: PathLike, source_identity: str) -> Watermark:
    """
    Load the watermark for a source.

    Args:
        path: State file location
        source_identity: Identity of the source being imported

    Returns:
        The persisted watermark, or an empty one for the identity when the
        file is missing, malformed or belongs to another source
    """
    state_file = Path(path)

    if not state_file.exists():
        logger.info(f"No state file at {state_file}, importing all records")
        return Watermark.empty(source_identity)

    try:
        content = state_file.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.warning(f"Could not read state file {state_file}: {e}")
        return Watermark.empty(source_identity)

    try:
        watermark = Watermark.model_validate_json(content)
    except ValidationError as e:
        logger.warning(
            f"Malformed state file {state_file}, ignoring it: "
            f"{e.error_count()} validation error(s)"
        )
        return Watermark.empty(source_identity)

    if watermark.source_file != source_identity:
        logger.warning(
            f"State file {state_file} belongs to '{watermark.source_file}', "
            f"not '{source_identity}'; starting from an empty watermark"
        )
        return Watermark.empty(source_identity)

    logger.info(
        f"Loaded watermark for {source_identity}: "
        f"last_imported_timestamp={watermark.last_imported_timestamp}, "
        f"records_imported={watermark.records_imported}"
    )
    return watermark


def save_watermark(watermark: Watermark, path: PathLike) -> None:
    """
    Atomically persist a watermark.

    Raises:
        CheckpointError: The state file could not be written
    """
    state_file = Path(path)
    directory = state_file.parent
    temp_name = None

    try:
        directory.mkdir(parents=True, exist_ok=True)
        fd, temp_name = tempfile.mkstemp(
            prefix=f".{state_file.name}.", suffix=".tmp", dir=str(directory)
        )
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(watermark.model_dump_json(indent=2))
        os.replace(temp_name, state_file)
        temp_name = None
    except OSError as e:
        raise CheckpointError(
            "Failed to save import state",
            context={
                "state_file": str(state_file),
                "source_file": watermark.source_file,
                "operation": "save"
            },
            original_exception=e
        )
    finally:
        if temp_name is not None and os.path.exists(temp_name):
            os.unlink(temp_name)

    logger.info(f"Import state saved to {state_file}")
