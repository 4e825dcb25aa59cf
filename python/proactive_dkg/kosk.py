"""Knowledge-of-secret-key (KOSK) proofs.

Before a party trusts the commitments of another party, the other party has to
prove knowledge of the discrete logarithm of its commitment to the secret
(the zero-degree coefficient of its polynomial). This prevents rogue-key
attacks, where a party chooses its contribution to the public key as a function
of the contributions of the others in order to cancel them out.

The proof is a Schnorr signature, produced with the secret as signing key, on
the compressed encoding of the commitment itself.
"""

from secp256k1lab.secp256k1 import GE, Scalar

from .curve import CurveParams
from .network import KoskMsg
from .schnorr import Schnorr
from .util import CurveMismatchError


def kosk_msg(com_to_secret: GE) -> bytes:
    return com_to_secret.to_bytes_compressed()


def kosk_prove(secret: Scalar, curve: CurveParams, schnorr: Schnorr) -> KoskMsg:
    if schnorr.curve != curve:
        raise CurveMismatchError(
            f"Signer uses curve {schnorr.curve.name}, protocol uses {curve.name}"
        )
    com_to_secret = schnorr.pubkey(secret)
    sig = schnorr.sign(secret, kosk_msg(com_to_secret))
    return KoskMsg(sig, schnorr.curve)


def kosk_verify(kosk: KoskMsg, com_to_secret: GE, curve: CurveParams) -> bool:
    # The signer's curve parameters must be exactly the protocol's.
    if kosk.curve != curve:
        raise CurveMismatchError(
            f"Proof was created over curve {kosk.curve.name}, expected {curve.name}"
        )
    if com_to_secret.infinity:
        return False
    return Schnorr(curve).verify(com_to_secret, kosk_msg(com_to_secret), kosk.signature)
