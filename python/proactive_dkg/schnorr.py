from typing import NamedTuple

from secp256k1lab.secp256k1 import GE, Scalar

from .curve import CurveParams, SECP256K1, generator
from .util import hash_to_scalar, random_scalar


class Signature(NamedTuple):
    R: GE
    e: Scalar


class Schnorr:
    """Schnorr signatures over a fixed curve.

    A signature on `msg` under secret key `sk` (public key `PK = sk * G`) is a
    pair `(R, e)` with `R = r * G` for a fresh nonce `r` and
    `e = r + c * sk`, where `c = H(PK || R || msg)`. It verifies if
    `e * G == R + c * PK`.
    """

    CHALLENGE_TAG = "schnorr challenge"

    def __init__(self, curve: CurveParams = SECP256K1) -> None:
        self.curve = curve
        self.G = generator(curve)

    def pubkey(self, seckey: Scalar) -> GE:
        pubkey: GE = seckey * self.G
        return pubkey

    def challenge(self, pubkey: GE, R: GE, msg: bytes) -> Scalar:
        return hash_to_scalar(
            self.CHALLENGE_TAG,
            pubkey.to_bytes_compressed() + R.to_bytes_compressed() + msg,
        )

    def sign(self, seckey: Scalar, msg: bytes) -> Signature:
        if seckey == 0:
            raise ValueError("Secret key must not be zero")
        r = random_scalar()
        while r == 0:
            r = random_scalar()
        R = r * self.G
        c = self.challenge(self.pubkey(seckey), R, msg)
        return Signature(R, r + c * seckey)

    def verify(self, pubkey: GE, msg: bytes, sig: Signature) -> bool:
        R, e = sig
        if pubkey.infinity or R.infinity:
            return False
        c = self.challenge(pubkey, R, msg)
        valid: bool = e * self.G == R + c * pubkey
        return valid
