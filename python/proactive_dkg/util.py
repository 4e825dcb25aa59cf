from secrets import token_bytes as random_bytes
from typing import Any, Optional

from secp256k1lab.secp256k1 import GE, Scalar
from secp256k1lab.util import int_from_bytes, tagged_hash


BIP_TAG = "Proactive DKG/"


def tagged_hash_dkg(tag: str, msg: bytes) -> bytes:
    return tagged_hash(BIP_TAG + tag, msg)


def hash_to_scalar(tag: str, msg: bytes) -> Scalar:
    # Keep the leftmost bits of the digest, as many as the group order has
    # (FIPS 180 truncation), then reduce into the scalar field.
    digest = tagged_hash_dkg(tag, msg)
    value = int_from_bytes(digest)
    excess = 8 * len(digest) - GE.ORDER.bit_length()
    if excess > 0:
        value >>= excess
    return Scalar.from_int_wrapping(value)


def random_scalar() -> Scalar:
    # Rejection sampling keeps the result uniform in [0, n).
    while True:
        try:
            return Scalar.from_bytes_checked(random_bytes(32))
        except ValueError:
            continue


class DKGError(Exception):
    """Base exception for all errors that abort a DKG run."""


class ConfigurationError(DKGError, ValueError):
    """Raised if the session or a party is configured inconsistently.

    Examples are a threshold larger than the number of participants, a
    participant index outside of `1..n`, or a masking polynomial whose length
    differs from the length of the secret sharing polynomial.
    """


class ProtocolStateError(DKGError):
    """Raised if a protocol step is invoked in a state that does not allow it.

    A party or session that has aborted raises this exception for every
    further step. A failed run must be restarted from scratch.
    """


class MissingDataError(DKGError):
    """Raised if required data of a peer is absent when it is consumed.

    Attributes:
        participant (int): Index of the party that misses the data.
        peer (Optional[int]): Index of the peer whose data is missing, if any.
    """

    def __init__(self, participant: int, peer: Optional[int], *args: Any):
        self.participant = participant
        self.peer = peer
        super().__init__(participant, peer, *args)


class IntegrityError(DKGError):
    """Raised if received per-peer data has an unexpected shape.

    Attributes:
        participant (int): Index of the party that detected the inconsistency.
        peer (int): Index of the peer that sent the inconsistent data.
    """

    def __init__(self, participant: int, peer: int, *args: Any):
        self.participant = participant
        self.peer = peer
        super().__init__(participant, peer, *args)


class VerificationError(DKGError):
    """Raised if a proof, a share or the final outputs fail to verify.

    This covers invalid proofs of knowledge, secret shares that do not match
    the sender's commitment, and parties that end up with different public
    keys. Assuming messages have been delivered correctly, the suspected
    participant (if any) has deviated from the protocol.

    Attributes:
        participant (Optional[int]): Index of the suspected participant, or
            None if the failure cannot be attributed to a single participant.
    """

    def __init__(self, participant: Optional[int], *args: Any):
        self.participant = participant
        super().__init__(participant, *args)


class CurveMismatchError(DKGError):
    """Raised if a proof of knowledge was produced over a different curve."""
