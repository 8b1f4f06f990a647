"""
wa_relay/errors.py

Error taxonomy shared by the relay server and the bridge.

- ValidationError   -> missing / malformed fields, never retried (HTTP 400)
- TransportNotReady -> gate closed, job skipped, attempt not counted (HTTP 503)
- TransportFailure  -> send attempt failed, retried up to the ceiling (HTTP 500)
- StoreError        -> datastore read/write failure, logged, tick continues
"""


class RelayError(RuntimeError):
    pass


class ValidationError(RelayError):
    pass


class TransportNotReady(RelayError):
    pass


class TransportFailure(RelayError):
    pass


class StoreError(RelayError):
    pass
