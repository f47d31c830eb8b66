"""CLI logging setup: plain %(message)s output, optional verbose prefixes."""

import logging
import sys

from deckhand.redact import SecretRedactingFilter


class _VerboseFormatter(logging.Formatter):
    """Show ``deckhand.deploy.rollout`` as ``[rollout]``."""

    def format(self, record):
        if record.name.startswith("deckhand."):
            record.name = record.name.rsplit(".", 1)[-1]
        return super().format(record)


def setup_cli_logging(verbose=False):
    """Configure root logger for CLI commands.

    Default output is identical to print(). With verbose=True, debug records
    (every remote command) are shown with a [module] prefix.
    """
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    root.handlers.clear()
    handler = logging.StreamHandler(sys.stdout)
    if verbose:
        handler.setFormatter(_VerboseFormatter("[%(name)s] %(message)s"))
    else:
        handler.setFormatter(logging.Formatter("%(message)s"))
    # Handler-level so records propagated from child loggers are redacted too.
    handler.addFilter(SecretRedactingFilter())
    root.addHandler(handler)
