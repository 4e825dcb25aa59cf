"""Threshold distributed key generation with proactive share refresh.

WARNING: This code is slow and trivially vulnerable to side channel attacks. Do
not use for anything but tests.

`n` parties jointly generate a public key such that every party holds a
`t`-of-`n` share of the corresponding secret key. Each party shares a random
secret with a Feldman (or Pedersen) verifiable secret sharing, proves knowledge
of its secret with a Schnorr proof (KOSK), and sends every other party its
evaluation of the sharing polynomial. The secret key is the sum of all secrets;
it is never known to anyone.

A refresh re-randomizes all shares with sharings of zero. The public key and
the secret stay the same, while shares of different epochs cannot be combined.

The public API consists of all functions with docstrings, including the types in
their arguments and return values, and the exceptions they raise; see also the
`__all__` list. All other definitions are internal.
"""

import logging
from typing import Callable, List, NamedTuple, Optional, Sequence

from secp256k1lab.secp256k1 import GE

from .curve import CurveParams, SECP256K1, generator
from .network import Network
from .party import DKGOutput, Party, PartyState
from .util import (
    ConfigurationError,
    CurveMismatchError,
    DKGError,
    IntegrityError,
    MissingDataError,
    ProtocolStateError,
    VerificationError,
)
from .vss import CommitmentScheme, FeldmanScheme, PedersenScheme

__all__ = [
    # Functions
    "params_validate",
    # Classes
    "DKG",
    "Party",
    "FeldmanScheme",
    "PedersenScheme",
    # Exceptions
    "DKGError",
    "ConfigurationError",
    "MissingDataError",
    "IntegrityError",
    "VerificationError",
    "CurveMismatchError",
    "ProtocolStateError",
    # Types
    "DKGParams",
    "DKGOutput",
    "PartyState",
]

logger = logging.getLogger(__name__)


class DKGParams(NamedTuple):
    """A `DKGParams` tuple holds the common parameters of a DKG session.

    Attributes:
        t: The threshold `t`, i.e., the number of shares required to
            reconstruct the secret. It must hold that `1 <= t <= n`.
        n: The number of participants. Participants have indices `1..n`.
    """

    t: int
    n: int


def params_validate(params: DKGParams) -> None:
    """Validate the parameters of a DKG session.

    Arguments:
        params: The parameters to validate.

    Raises:
        ConfigurationError: If `t` or `n` is not an integer or if
            `1 <= t <= n` does not hold.
    """
    t, n = params
    if not isinstance(t, int) or not isinstance(n, int):
        raise ConfigurationError("Threshold and number of participants must be ints")
    if not 1 <= t <= n:
        raise ConfigurationError(f"Invalid threshold t={t} for n={n}")


# Steps of one epoch. Every party completes a step before any party starts the
# next one.
KEYGEN_STEPS = (
    "prepare",
    "broadcast",
    "verify_kosks",
    "send_evaluations",
    "verify_evaluations",
    "compute_secret_share",
    "compute_public_key",
)

REFRESH_STEPS = (
    "prepare_refresh",
    "broadcast",
    "verify_kosks",
    "send_evaluations",
    "verify_evaluations",
    "compute_secret_share",
)


class DKG:
    """Orchestrator of a simulated DKG session.

    Creates the parties, connects them through a fully connected in-process
    `Network` and drives them through the protocol in lock-step. The first
    error raised by any party aborts the whole session; an aborted session
    cannot be used anymore.

    Arguments:
        t: The threshold.
        n: The number of participants.
        curve: The curve of the protocol. Only `SECP256K1` is supported.
        scheme: The commitment scheme, `FeldmanScheme()` by default.
        party_cls: The class of the parties, or any callable with the signature
            of `Party`, e.g., to simulate faulty ones.

    Raises:
        ConfigurationError: If the parameters are invalid or the curve is not
            supported.
    """

    def __init__(
        self,
        t: int,
        n: int,
        curve: CurveParams = SECP256K1,
        scheme: Optional[CommitmentScheme] = None,
        party_cls: Callable[..., Party] = Party,
    ) -> None:
        self.params = DKGParams(t, n)
        params_validate(self.params)
        # Raises for curves other than secp256k1
        generator(curve)
        self.scheme = scheme if scheme is not None else FeldmanScheme()
        self.network = Network()
        self.parties: List[Party] = [
            party_cls(idx, t, n, self.network.channel(idx), curve, self.scheme)
            for idx in range(1, n + 1)
        ]
        for party in self.parties:
            for other in self.parties:
                if party.idx != other.idx:
                    party.channel.connect(other.idx)

        self.epoch = 0
        self.aborted = False
        self.public_key: Optional[GE] = None

    @property
    def t(self) -> int:
        return self.params.t

    @property
    def n(self) -> int:
        return self.params.n

    def run_step(self, step: str) -> None:
        """Run one protocol step on every party.

        Arguments:
            step: Name of the `Party` method implementing the step.

        Raises:
            ProtocolStateError: If the session has aborted.
            DKGError: If any party fails the step. The session is aborted.
        """
        if self.aborted:
            raise ProtocolStateError("Session has aborted")
        logger.debug("Epoch %d: running step %s", self.epoch, step)
        try:
            for party in self.parties:
                getattr(party, step)()
        except DKGError as e:
            logger.warning(
                "Epoch %d: session aborted in step %s: %r", self.epoch, step, e
            )
            self.aborted = True
            raise

    def _run_steps(self, steps: Sequence[str]) -> None:
        for step in steps:
            self.run_step(step)

    def keygen(self) -> GE:
        """Run the key generation (epoch 0).

        Returns:
            The public key, on which all parties agree.

        Raises:
            ProtocolStateError: If key generation has already been run or the
                session has aborted.
            VerificationError: If a party sent an invalid proof of knowledge or
                an invalid share, or if the parties disagree on the outputs.
            CurveMismatchError: If a proof of knowledge was created over a
                different curve.
            MissingDataError: If a party did not receive required data.
            IntegrityError: If a party received data of unexpected shape.
        """
        if self.public_key is not None:
            raise ProtocolStateError("Key generation has already been run")
        self._run_steps(KEYGEN_STEPS)
        self._check_consistency()

        self.public_key = self.parties[0].public_key
        assert self.public_key is not None
        logger.info("Key generation completed for t=%d, n=%d", self.t, self.n)
        return self.public_key

    def refresh(self) -> None:
        """Re-randomize the shares of all parties (next epoch).

        The public key and the shared secret are preserved. No proofs of
        knowledge are exchanged, since the constant terms of the refresh
        polynomials are zero.

        Raises:
            ProtocolStateError: If key generation has not been run or the
                session has aborted.
            VerificationError: If a party sent an invalid share, or if the
                parties disagree on the outputs.
            MissingDataError: If a party did not receive required data.
            IntegrityError: If a party received data of unexpected shape.
        """
        if self.public_key is None:
            raise ProtocolStateError("Key generation has not been run")
        if self.aborted:
            raise ProtocolStateError("Session has aborted")
        self.epoch += 1
        self._run_steps(REFRESH_STEPS)
        self._check_consistency()

        logger.info("Refresh completed, now in epoch %d", self.epoch)

    def _check_consistency(self) -> None:
        # Honest runs of both rounds yield identical public outputs.
        public_keys = [party.public_key for party in self.parties]
        group_commitments = [party.group_commitment for party in self.parties]
        if any(pk != public_keys[0] for pk in public_keys) or any(
            com != group_commitments[0] for com in group_commitments
        ):
            self.aborted = True
            e = VerificationError(None, "Participants computed different outputs")
            logger.warning("Epoch %d: session aborted: %r", self.epoch, e)
            for party in self.parties:
                party.abort(e)
            raise e

    def outputs(self) -> List[DKGOutput]:
        """Return the outputs of all parties, indexed by participant index - 1.

        Raises:
            ProtocolStateError: If key generation has not completed or the
                session has aborted.
        """
        if self.aborted:
            raise ProtocolStateError("Session has aborted")
        return [party.output() for party in self.parties]

