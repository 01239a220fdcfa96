"""CLI logging setup: plain %(message)s output with secret redaction."""

import logging
import sys

from cloudrun.redact import SecretRedactingFilter


def setup_cli_logging(verbose=False):
    """Configure the root logger for CLI commands.

    Messages go to stdout unprefixed; ``verbose`` enables DEBUG records,
    including state transitions and every remote command.
    """
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    root.handlers.clear()
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("%(message)s"))
    handler.addFilter(SecretRedactingFilter())
    root.addHandler(handler)
    # boto/paramiko are chatty at DEBUG
    for name in ("botocore", "boto3", "urllib3", "paramiko"):
        logging.getLogger(name).setLevel(logging.WARNING)
