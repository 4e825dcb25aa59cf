from typing import NamedTuple

from secp256k1lab.secp256k1 import G, GE

from .util import ConfigurationError


class CurveParams(NamedTuple):
    """Domain parameters of a short Weierstrass curve y^2 = x^3 + a*x + b.

    Attributes:
        name: Human-readable curve name.
        p: Prime modulus of the base field.
        a: Curve coefficient a.
        b: Curve coefficient b.
        gx: x coordinate of the generator.
        gy: y coordinate of the generator.
        n: Order of the generator, i.e., the modulus of the scalar field.
        h: Cofactor.
    """

    name: str
    p: int
    a: int
    b: int
    gx: int
    gy: int
    n: int
    h: int


SECP256K1 = CurveParams(
    name="secp256k1",
    p=2**256 - 2**32 - 977,
    a=0,
    b=7,
    gx=0x79BE667EF9DCBBAC55A06295CE870B07029BFCDB2DCE28D959F2815B16F81798,
    gy=0x483ADA7726A3C4655DA4FBFC0E1108A8FD17B448A68554199C47D08FFB10D4B8,
    n=0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141,
    h=1,
)


def generator(curve: CurveParams) -> GE:
    # Group arithmetic is provided by secp256k1lab, which implements
    # secp256k1 only.
    if curve != SECP256K1:
        raise ConfigurationError(f"Unsupported curve: {curve.name}")
    return G
