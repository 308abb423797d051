"""Exception hierarchy for federation failures.

Every failure raised by the federation engine derives from FederationError.
Processing code classifies these into transient failures (retried with
backoff) and permanent failures (logged and dropped).
"""

from __future__ import annotations


class FederationError(RuntimeError):
    """Base exception raised for federation-related failures."""


class MalformedActivityError(FederationError):
    """Raised when a request body cannot be parsed into an activity."""


class DomainBlockedError(FederationError):
    """Raised when an activity originates from a blocked instance."""


class SignatureError(FederationError):
    """Raised when an HTTP signature is missing, malformed or does not verify.

    Signature failures are permanent: the same request will never verify.
    """


class UnknownActorKeyError(SignatureError):
    """Raised when the signing actor's key cannot be obtained from its owner."""


class KeyFetchError(FederationError):
    """Raised when an actor document cannot be fetched because of the network.

    Key fetch failures are transient and the job is retried later.
    """


class MissingPrivateKeyError(FederationError):
    """Raised when a signer is requested for an actor without a private key."""


class TransientProcessingError(FederationError):
    """Raised by handlers when processing may succeed on a later attempt."""


class PermanentProcessingError(FederationError):
    """Raised by handlers when the activity can never be applied."""


class DeliveryStateError(FederationError):
    """Raised on an illegal delivery event state transition."""


class DeliveryEventNotFoundError(FederationError):
    """Raised when a delivery event id does not exist."""


class UnsupportedSortColumnError(FederationError):
    """Raised when an audit listing is sorted by an unknown column."""
