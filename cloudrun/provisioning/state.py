"""Ledger persistence: the JSON state file that lets a later process tear down."""

import json
import logging
import os
from pathlib import Path

from cloudrun.provisioning.types import ResourceLedger

logger = logging.getLogger(__name__)

STATE_FILE_NAME = "instance.json"


def default_state_path(output_dir):
    return os.path.join(output_dir, STATE_FILE_NAME)


def save_ledger(ledger: ResourceLedger, path) -> None:
    """Write the ledger to ``path``, replacing any previous contents atomically."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + ".tmp")
    tmp_path.write_text(json.dumps(ledger.to_dict(), indent=2) + "\n")
    os.replace(tmp_path, path)
    logger.debug(f"Saved ledger to {path}")


def load_ledger(path) -> ResourceLedger:
    """Read a ledger previously written by ``save_ledger``."""
    return ResourceLedger.from_dict(json.loads(Path(path).read_text()))


def remove_ledger(path) -> None:
    """Delete the state file once every resource in it is gone."""
    Path(path).unlink(missing_ok=True)
    logger.info(f"Removed {path}")
