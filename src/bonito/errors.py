"""Error taxonomy for by-dimension queries."""

from __future__ import annotations


class BonitoError(Exception):
    status_code = 500


class ClientError(BonitoError):
    """The request itself is invalid; the store is never called."""

    status_code = 400


class BackendError(BonitoError):
    """The store failed or answered with something we cannot read."""

    status_code = 500
