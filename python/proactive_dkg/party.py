from __future__ import annotations

import logging
from enum import Enum
from typing import Dict, List, NamedTuple, Optional

from secp256k1lab.secp256k1 import GE, Scalar

from .curve import CurveParams, SECP256K1
from .kosk import kosk_prove, kosk_verify
from .network import Channel, CommitmentsMsg, EvaluationMsg, KoskMsg, Payload
from .schnorr import Schnorr
from .util import (
    ConfigurationError,
    DKGError,
    IntegrityError,
    MissingDataError,
    ProtocolStateError,
    VerificationError,
)
from .vss import (
    CommitmentScheme,
    Evaluation,
    FeldmanScheme,
    Polynomial,
    VSSCommitment,
)

logger = logging.getLogger(__name__)


class PartyState(Enum):
    INIT = "init"
    COMMITMENTS_READY = "commitments ready"
    BROADCAST = "broadcast"
    KOSK_VERIFIED = "kosk verified"
    EVALUATIONS_SENT = "evaluations sent"
    EVALUATIONS_VERIFIED = "evaluations verified"
    SHARE_COMPUTED = "share computed"
    PUBLIC_KEY_COMPUTED = "public key computed"
    ABORTED = "aborted"


class DKGOutput(NamedTuple):
    secshare: bytes
    public_key: bytes
    pubshares: List[bytes]


class PeerRecord:
    # Everything a party has received from one peer in the current epoch.
    FIELDS = ("commitment", "masked", "kosk", "evaluation")

    def __init__(self, peer: int) -> None:
        self.peer = peer
        self.commitment: Optional[VSSCommitment] = None
        self.masked: Optional[VSSCommitment] = None
        self.kosk: Optional[KoskMsg] = None
        self.evaluation: Optional[Evaluation] = None

    def require(self, field: str, participant: int):
        assert field in self.FIELDS
        value = getattr(self, field)
        if value is None:
            raise MissingDataError(
                participant, self.peer, f"No {field} received from peer"
            )
        return value

    def store(self, field: str, value, participant: int) -> None:
        assert field in self.FIELDS
        if getattr(self, field) is not None:
            raise IntegrityError(participant, self.peer, f"Duplicate {field} message")
        setattr(self, field, value)


class Party:
    """A participant of the DKG protocol.

    The party holds its own polynomial(s), the commitments and proof it
    broadcasts, and one `PeerRecord` per peer with the data received from
    that peer. It talks to its peers exclusively through the `Channel` it is
    given, and walks through the states of `PartyState` once per epoch.
    """

    def __init__(
        self,
        idx: int,
        t: int,
        n: int,
        channel: Channel,
        curve: CurveParams = SECP256K1,
        scheme: Optional[CommitmentScheme] = None,
    ) -> None:
        if not 1 <= t <= n:
            raise ConfigurationError(f"Invalid threshold t={t} for n={n}")
        if not 1 <= idx <= n:
            raise ConfigurationError(f"Invalid participant index: {idx}")

        self.idx = idx
        self.t = t
        self.n = n
        self.channel = channel
        self.curve = curve
        self.scheme = scheme if scheme is not None else FeldmanScheme()
        self.schnorr = Schnorr(curve)
        self.state = PartyState.INIT
        self.epoch = 0

        self.f: Optional[Polynomial] = None
        self.h: Optional[Polynomial] = None
        self.commitment: Optional[VSSCommitment] = None
        self.masked: Optional[VSSCommitment] = None
        self.kosk: Optional[KoskMsg] = None
        self.peers: Dict[int, PeerRecord] = {}

        self.secshare: Optional[Scalar] = None
        self.public_key: Optional[GE] = None
        # Sum of the Feldman commitments of all parties, kept across epochs
        self.group_commitment: Optional[VSSCommitment] = None

    ###
    ### State handling
    ###

    def _expect(self, *states: PartyState) -> None:
        if self.state is PartyState.ABORTED:
            raise ProtocolStateError(f"Participant {self.idx} has aborted")
        if self.state not in states:
            raise ProtocolStateError(
                f"Participant {self.idx} is in state '{self.state.value}'"
            )

    def abort(self, e: DKGError) -> None:
        logger.warning("Participant %d aborts in epoch %d: %r", self.idx, self.epoch, e)
        self.state = PartyState.ABORTED

    def other_indices(self) -> List[int]:
        return [i for i in range(1, self.n + 1) if i != self.idx]

    def _offset(self) -> int:
        # Refresh polynomials have no commitment to their (zero) constant term.
        return 0 if self.epoch == 0 else 1

    def _feldman(self, record: PeerRecord) -> VSSCommitment:
        if self.scheme.masking:
            masked: VSSCommitment = record.require("masked", self.idx)
            return masked
        commitment: VSSCommitment = record.require("commitment", self.idx)
        return commitment

    def _own_feldman(self) -> VSSCommitment:
        assert self.commitment is not None
        return self.masked if self.masked is not None else self.commitment

    ###
    ### Round 1
    ###

    def prepare(self) -> None:
        self._expect(PartyState.INIT)
        self._setup()

    def prepare_refresh(self) -> None:
        self._expect(PartyState.SHARE_COMPUTED, PartyState.PUBLIC_KEY_COMPUTED)
        if self.public_key is None:
            raise ProtocolStateError(
                f"Participant {self.idx} has not completed key generation"
            )
        self.epoch += 1
        self._setup()

    def _setup(self) -> None:
        refresh = self.epoch > 0
        offset = self._offset()
        self.f = Polynomial.generate(self.t - 1, force_zero_constant=refresh)
        self.h = None
        self.masked = None
        if self.scheme.masking:
            self.h = Polynomial.generate(self.t - 1, force_zero_constant=refresh)
            self.masked = FeldmanScheme().commit(self.f, offset=offset)
        self.commitment = self.scheme.commit(self.f, self.h, offset)

        # A zero constant term has no discrete logarithm to prove knowledge of.
        self.kosk = None
        if not refresh:
            self.kosk = kosk_prove(self.f.secret(), self.curve, self.schnorr)

        self.peers = {}
        self.state = PartyState.COMMITMENTS_READY
        logger.debug("Participant %d prepared epoch %d", self.idx, self.epoch)

    def broadcast(self) -> None:
        self._expect(PartyState.COMMITMENTS_READY)
        assert self.commitment is not None
        self.channel.broadcast(CommitmentsMsg(self.commitment, self.masked))
        if self.kosk is not None:
            self.channel.broadcast(self.kosk)
        self.state = PartyState.BROADCAST

    def _process_inbox(self) -> None:
        for sender, payload in self.channel.receive():
            self._store(sender, payload)

    def _store(self, sender: int, payload: Payload) -> None:
        if sender not in self.other_indices():
            raise IntegrityError(self.idx, sender, "Message from unknown participant")
        record = self.peers.setdefault(sender, PeerRecord(sender))
        if isinstance(payload, CommitmentsMsg):
            record.store("commitment", payload.commitment, self.idx)
            if payload.masked is not None:
                record.store("masked", payload.masked, self.idx)
        elif isinstance(payload, KoskMsg):
            record.store("kosk", payload, self.idx)
        elif isinstance(payload, EvaluationMsg):
            record.store("evaluation", payload.evaluation, self.idx)
        else:
            raise TypeError(f"Unknown payload type: {type(payload).__name__}")

    def check_integrity(self) -> None:
        # Every peer must have sent vectors of exactly the length the
        # current epoch requires before anything is derived from them.
        offset = self._offset()
        for peer in self.other_indices():
            record = self.peers.get(peer)
            if record is None:
                raise MissingDataError(self.idx, peer, "No data received from peer")
            coms = [record.require("commitment", self.idx)]
            if self.scheme.masking:
                coms.append(record.require("masked", self.idx))
            elif record.masked is not None:
                raise IntegrityError(self.idx, peer, "Unexpected masked commitment")
            for com in coms:
                if com.offset != offset or len(com.ges) != self.t - offset:
                    raise IntegrityError(
                        self.idx, peer, "Commitment has unexpected length"
                    )
            if self.epoch == 0:
                record.require("kosk", self.idx)

    def verify_kosks(self) -> None:
        self._expect(PartyState.BROADCAST)
        try:
            self._process_inbox()
            self.check_integrity()
            if self.epoch == 0:
                for peer in self.other_indices():
                    record = self.peers[peer]
                    com_to_secret = self._feldman(record).commitment_to_secret()
                    if not kosk_verify(record.kosk, com_to_secret, self.curve):
                        raise VerificationError(
                            peer, "Participant sent invalid proof of knowledge"
                        )
        except DKGError as e:
            self.abort(e)
            raise
        self.state = PartyState.KOSK_VERIFIED

    ###
    ### Round 2
    ###

    def evaluation_for(self, peer: int) -> Evaluation:
        assert self.f is not None
        x = Scalar(peer)
        y_mask = self.h(x) if self.h is not None else None
        return Evaluation(x, self.f(x), y_mask)

    def send_evaluations(self) -> None:
        self._expect(PartyState.KOSK_VERIFIED)
        # Evaluations are secret, so they go to their recipient only.
        for peer in self.other_indices():
            self.channel.send(peer, EvaluationMsg(self.evaluation_for(peer)))
        self.state = PartyState.EVALUATIONS_SENT

    def verify_evaluations(self) -> None:
        self._expect(PartyState.EVALUATIONS_SENT)
        try:
            self._process_inbox()
            x = Scalar(self.idx)
            for peer in self.other_indices():
                record = self.peers[peer]
                evaluation: Evaluation = record.require("evaluation", self.idx)
                if evaluation.x != x:
                    raise VerificationError(
                        peer, "Participant sent share for another index"
                    )
                if not self.scheme.verify(record.commitment, evaluation):
                    raise VerificationError(peer, "Participant sent invalid share")
                if self.scheme.masking and not FeldmanScheme().verify(
                    record.masked, evaluation
                ):
                    raise VerificationError(
                        peer, "Participant sent share not matching masked commitment"
                    )
        except DKGError as e:
            self.abort(e)
            raise
        self.state = PartyState.EVALUATIONS_VERIFIED

    ###
    ### Finalization
    ###

    def compute_secret_share(self) -> Scalar:
        self._expect(PartyState.EVALUATIONS_VERIFIED)
        assert self.f is not None
        x = Scalar(self.idx)
        secshare = self.f(x)
        for peer in self.other_indices():
            secshare += self.peers[peer].evaluation.y
        if self.epoch > 0:
            assert self.secshare is not None
            secshare += self.secshare

        sum_com = self._own_feldman()
        for peer in self.other_indices():
            sum_com = sum_com + self._feldman(self.peers[peer])
        group_commitment = (
            sum_com if self.epoch == 0 else self.group_commitment.accumulate(sum_com)
        )

        if secshare * self.schnorr.G != group_commitment.pubshare(x):
            e = VerificationError(None, "Secret share does not match group commitment")
            self.abort(e)
            raise e

        self.secshare = secshare
        self.group_commitment = group_commitment
        self.state = PartyState.SHARE_COMPUTED
        logger.debug("Participant %d computed share of epoch %d", self.idx, self.epoch)
        return secshare

    def compute_public_key(self) -> GE:
        self._expect(PartyState.SHARE_COMPUTED)
        # The public key is fixed by key generation and never recomputed.
        if self.epoch != 0 or self.public_key is not None:
            raise ProtocolStateError(
                f"Participant {self.idx} computes the public key in epoch 0 only"
            )
        public_key = self._own_feldman().commitment_to_secret()
        for peer in self.other_indices():
            com = self._feldman(self.peers[peer])
            public_key = public_key + com.commitment_to_secret()
        if public_key.infinity:
            e = VerificationError(None, "Public key is the point at infinity")
            self.abort(e)
            raise e

        self.public_key = public_key
        self.state = PartyState.PUBLIC_KEY_COMPUTED
        return public_key

    def pubshares(self) -> List[GE]:
        # Public verification shares of all participants, i.e., s_i * G.
        if self.group_commitment is None:
            raise ProtocolStateError(f"Participant {self.idx} has no shares yet")
        return [self.group_commitment.pubshare(Scalar(i)) for i in range(1, self.n + 1)]

    def output(self) -> DKGOutput:
        self._expect(PartyState.SHARE_COMPUTED, PartyState.PUBLIC_KEY_COMPUTED)
        if self.secshare is None or self.public_key is None:
            raise ProtocolStateError(
                f"Participant {self.idx} has not completed key generation"
            )
        return DKGOutput(
            self.secshare.to_bytes(),
            self.public_key.to_bytes_compressed(),
            [pubshare.to_bytes_compressed() for pubshare in self.pubshares()],
        )
