from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, NamedTuple, Optional

from secp256k1lab.secp256k1 import GE, G, Scalar

from .util import ConfigurationError, random_scalar


# Nothing-up-my-sleeve generator with unknown discrete logarithm with respect
# to G, taken from BIP 341.
H = GE.from_bytes_compressed(
    bytes.fromhex(
        "0250929b74c1a04954b78b4b6035e97a5e078a5a0f28ec96d547bfee9ace803ac0"
    )
)


class Polynomial:
    # A scalar polynomial.
    #
    # A polynomial f of degree at most t - 1 is represented by a list `coeffs`
    # of t coefficients, i.e., f(x) = coeffs[0] + ... + coeffs[t-1] *
    # x^(t-1). The modulus is the group order.
    coeffs: List[Scalar]

    def __init__(self, coeffs: List[Scalar]) -> None:
        self.coeffs = coeffs

    @staticmethod
    def generate(degree: int, force_zero_constant: bool = False) -> Polynomial:
        if degree < 0:
            raise ConfigurationError(f"Invalid polynomial degree: {degree}")
        coeffs = [random_scalar() for _ in range(degree + 1)]
        if force_zero_constant:
            # Refresh polynomials must not change the shared secret.
            coeffs[0] = Scalar(0)
        return Polynomial(coeffs)

    def degree(self) -> int:
        return len(self.coeffs) - 1

    def eval(self, x: Scalar) -> Scalar:
        # Evaluate a polynomial at position x.

        value = Scalar(0)
        # Reverse coefficients to compute evaluation via Horner's method
        for coeff in self.coeffs[::-1]:
            value = value * x + coeff
        return value

    def __call__(self, x: Scalar) -> Scalar:
        return self.eval(x)

    def secret(self) -> Scalar:
        # Return the secret to be shared.
        #
        # This computes f(0).
        return self.coeffs[0]


class Evaluation(NamedTuple):
    x: Scalar
    y: Scalar
    # Evaluation of the masking polynomial (Pedersen only)
    y_mask: Optional[Scalar] = None


class VSSCommitment:
    # Commitments to the coefficients of a polynomial, starting at the
    # coefficient of degree `offset`. Refresh polynomials have a zero
    # constant term, which is not committed to, so their offset is 1.
    ges: List[GE]
    offset: int

    def __init__(self, ges: List[GE], offset: int = 0) -> None:
        if offset not in (0, 1):
            raise ConfigurationError(f"Invalid commitment offset: {offset}")
        self.ges = ges
        self.offset = offset

    def t(self) -> int:
        # Threshold of the committed polynomial
        return len(self.ges) + self.offset

    def pubshare(self, x: Scalar) -> GE:
        # Compute sum_j ges[j] * x^(j + offset), with all powers of x
        # reduced modulo the group order.
        if not self.ges:
            return GE()
        power = Scalar(1) if self.offset == 0 else x
        terms = []
        for ge in self.ges:
            terms.append((int(power), ge))
            power = power * x
        pubshare: GE = GE.batch_mul(*terms)
        return pubshare

    def to_bytes(self) -> bytes:
        return self.offset.to_bytes(1, byteorder="big") + b"".join(
            [ge.to_bytes_compressed_with_infinity() for ge in self.ges]
        )

    def __add__(self, other: VSSCommitment) -> VSSCommitment:
        assert self.offset == other.offset
        assert len(self.ges) == len(other.ges)
        return VSSCommitment(
            [self.ges[i] + other.ges[i] for i in range(len(self.ges))], self.offset
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, VSSCommitment):
            return NotImplemented
        return self.offset == other.offset and self.ges == other.ges

    def accumulate(self, refresh: VSSCommitment) -> VSSCommitment:
        # Add the commitment of a refresh polynomial (offset 1) onto a full
        # commitment (offset 0). The commitment to the secret is unchanged.
        assert self.offset == 0 and refresh.offset == 1
        assert self.t() == refresh.t()
        return VSSCommitment(
            [self.ges[0]]
            + [self.ges[j] + refresh.ges[j - 1] for j in range(1, len(self.ges))]
        )

    def commitment_to_secret(self) -> GE:
        assert self.offset == 0
        return self.ges[0]


class CommitmentScheme(ABC):
    # Whether the scheme needs a second, masking polynomial
    masking: bool = False

    @abstractmethod
    def commit(
        self, f: Polynomial, h: Optional[Polynomial] = None, offset: int = 0
    ) -> VSSCommitment:
        """Commit to the coefficients of `f` (and `h`) from degree `offset` on."""

    @abstractmethod
    def verify(self, com: VSSCommitment, evaluation: Evaluation) -> bool:
        """Check a received evaluation against the sender's commitment."""


class FeldmanScheme(CommitmentScheme):
    masking = False

    def commit(
        self, f: Polynomial, h: Optional[Polynomial] = None, offset: int = 0
    ) -> VSSCommitment:
        return VSSCommitment([c * G for c in f.coeffs[offset:]], offset)

    def verify(self, com: VSSCommitment, evaluation: Evaluation) -> bool:
        actual = evaluation.y * G
        valid: bool = actual == com.pubshare(evaluation.x)
        return valid


class PedersenScheme(CommitmentScheme):
    masking = True

    def commit(
        self, f: Polynomial, h: Optional[Polynomial] = None, offset: int = 0
    ) -> VSSCommitment:
        if h is None:
            raise ConfigurationError("Pedersen commitments need a masking polynomial")
        if len(f.coeffs) != len(h.coeffs):
            raise ConfigurationError(
                "Polynomial and masking polynomial have different lengths"
            )
        return VSSCommitment(
            [
                GE.batch_mul((int(fc), G), (int(hc), H))
                for fc, hc in zip(f.coeffs[offset:], h.coeffs[offset:])
            ],
            offset,
        )

    def verify(self, com: VSSCommitment, evaluation: Evaluation) -> bool:
        if evaluation.y_mask is None:
            return False
        actual = GE.batch_mul((int(evaluation.y), G), (int(evaluation.y_mask), H))
        valid: bool = actual == com.pubshare(evaluation.x)
        return valid
