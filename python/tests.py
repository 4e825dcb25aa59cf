#!/usr/bin/env python3

"""Tests for the proactive DKG implementation"""

from itertools import combinations
from typing import List

from secp256k1lab.secp256k1 import GE, G, Scalar

from proactive_dkg.curve import CurveParams, SECP256K1, generator
from proactive_dkg.kosk import kosk_prove, kosk_verify
from proactive_dkg.network import CommitmentsMsg, EvaluationMsg, Network
from proactive_dkg.party import Party, PartyState, PeerRecord
from proactive_dkg.schnorr import Schnorr
from proactive_dkg.util import (
    ConfigurationError,
    CurveMismatchError,
    IntegrityError,
    MissingDataError,
    ProtocolStateError,
    VerificationError,
    hash_to_scalar,
    random_scalar,
)
from proactive_dkg.vss import (
    Evaluation,
    FeldmanScheme,
    H,
    PedersenScheme,
    Polynomial,
    VSSCommitment,
)
from proactive_dkg.dkg import DKG, DKGParams, params_validate

from example import FaultyParty, simulate_dkg_full


P256 = CurveParams(
    name="secp256r1",
    p=2**256 - 2**224 + 2**192 + 2**96 - 1,
    a=2**256 - 2**224 + 2**192 + 2**96 - 4,
    b=0x5AC635D8AA3A93E7B3EBBD55769886BC651D06B0CC53B0F63BCE3C3E27D2604B,
    gx=0x6B17D1F2E12C4247F8BCE6E563A440F277037D812DEB33A0F4A13945D898C296,
    gy=0x4FE342E2FE1A7F9B8EE7EB4A7C0F9E162BCE33576B315ECECBB6406837BF51F5,
    n=0xFFFFFFFF00000000FFFFFFFFFFFFFFFFBCE6FAADA7179E84F3B9CAC2FC632551,
    h=1,
)


#
# Out-of-band reconstruction of secrets (auditing only)
#


def derive_interpolating_value(L, x_i):
    assert x_i in L
    assert all(L.count(x_j) <= 1 for x_j in L)
    lam = Scalar(1)
    for x_j in L:
        x_j = Scalar(x_j)
        x_i = Scalar(x_i)
        if x_j == x_i:
            continue
        lam *= x_j / (x_j - x_i)
    return lam


def recover_secret(participant_indices, shares) -> Scalar:
    interpolated_shares = []
    t = len(shares)
    assert len(participant_indices) == t
    for i in range(t):
        lam = derive_interpolating_value(participant_indices, participant_indices[i])
        interpolated_shares += [(lam * shares[i])]
    recovered_secret = Scalar.sum(*interpolated_shares)
    return recovered_secret


def secshares_of(dkg: DKG) -> List[Scalar]:
    return [party.secshare for party in dkg.parties]


def recover_from(dkg: DKG, indices) -> Scalar:
    indices = list(indices)
    return recover_secret(indices, [dkg.parties[i - 1].secshare for i in indices])


#
# Building blocks
#


def test_params_validate():
    for t, n in [(3, 2), (0, 2), (-2, 3), (1, 0)]:
        try:
            params_validate(DKGParams(t, n))
        except ConfigurationError:
            pass
        else:
            assert False, "Expected exception"

    try:
        DKG(4, 3)
    except ConfigurationError as e:
        # Configuration errors are value errors.
        assert isinstance(e, ValueError)
    else:
        assert False, "Expected exception"

    network = Network()
    for idx in [0, -1, 4]:
        try:
            Party(idx, 2, 3, network.channel(idx))
        except ConfigurationError:
            pass
        else:
            assert False, "Expected exception"

    try:
        DKG(2, 3, curve=P256)
    except ConfigurationError:
        pass
    else:
        assert False, "Expected exception"

    params_validate(DKGParams(1, 1))
    params_validate(DKGParams(3, 3))


def test_curve():
    assert generator(SECP256K1) == G
    assert SECP256K1.n == GE.ORDER
    assert int(G.x) == SECP256K1.gx
    assert int(G.y) == SECP256K1.gy


def test_polynomial():
    f = Polynomial([Scalar(23), Scalar(42)])
    assert f.degree() == 1
    assert f(Scalar(0)) == Scalar(23)
    assert f(Scalar(2)) == Scalar(107)
    assert f.secret() == Scalar(23)

    # Horner's method agrees with the naive evaluation modulo the group order.
    f = Polynomial.generate(3)
    x = random_scalar()
    naive = Scalar(0)
    power = Scalar(1)
    for coeff in f.coeffs:
        naive += coeff * power
        power *= x
    assert f(x) == naive

    for degree in range(0, 4):
        f = Polynomial.generate(degree, force_zero_constant=True)
        assert len(f.coeffs) == degree + 1
        assert f.secret() == 0
        assert f(Scalar(0)) == 0

    try:
        Polynomial.generate(-1)
    except ConfigurationError:
        pass
    else:
        assert False, "Expected exception"


def test_hash_to_scalar():
    order_bits = GE.ORDER.bit_length()
    for i in range(16):
        msg = i.to_bytes(4, byteorder="big")
        c = hash_to_scalar("test", msg)
        assert int(c).bit_length() <= order_bits
        assert c == hash_to_scalar("test", msg)
        assert c != hash_to_scalar("other test", msg)

    for _ in range(16):
        assert 0 <= int(random_scalar()) < GE.ORDER


def test_schnorr():
    schnorr = Schnorr()
    seckey = random_scalar()
    pubkey = schnorr.pubkey(seckey)
    assert pubkey == seckey * G

    sig = schnorr.sign(seckey, b"message")
    assert schnorr.verify(pubkey, b"message", sig)
    assert not schnorr.verify(pubkey, b"other message", sig)
    assert not schnorr.verify(schnorr.pubkey(random_scalar()), b"message", sig)
    assert not schnorr.verify(pubkey, b"message", sig._replace(e=sig.e + Scalar(1)))
    assert not schnorr.verify(GE(), b"message", sig)

    try:
        schnorr.sign(Scalar(0), b"message")
    except ValueError:
        pass
    else:
        assert False, "Expected exception"


def test_kosk():
    schnorr = Schnorr()
    secret = random_scalar()
    kosk = kosk_prove(secret, SECP256K1, schnorr)
    assert kosk.curve == SECP256K1
    assert kosk_verify(kosk, secret * G, SECP256K1)
    assert not kosk_verify(kosk, random_scalar() * G, SECP256K1)
    assert not kosk_verify(kosk, GE(), SECP256K1)

    # A proof created over another curve is rejected outright.
    try:
        kosk_verify(kosk._replace(curve=P256), secret * G, SECP256K1)
    except CurveMismatchError:
        pass
    else:
        assert False, "Expected exception"

    try:
        kosk_prove(secret, P256, schnorr)
    except CurveMismatchError:
        pass
    else:
        assert False, "Expected exception"


def test_vss_correctness():
    for scheme in [FeldmanScheme(), PedersenScheme()]:
        for t in range(1, 4):
            for n in range(t, 2 * t + 1):
                f = Polynomial.generate(t - 1)
                h = Polynomial.generate(t - 1) if scheme.masking else None
                com = scheme.commit(f, h)
                assert com.t() == t
                assert len(com.ges) == t
                for i in range(1, n + 1):
                    x = Scalar(i)
                    y_mask = h(x) if h is not None else None
                    assert scheme.verify(com, Evaluation(x, f(x), y_mask))
                    wrong = Evaluation(x, f(x) + Scalar(1), y_mask)
                    assert not scheme.verify(com, wrong)


def test_vss_pubshare_modular_powers():
    f = Polynomial.generate(3)
    com = FeldmanScheme().commit(f)
    # x = -1 mod n exercises the reduction of x^j.
    for x in [Scalar(1), Scalar(7), Scalar(GE.ORDER - 1), random_scalar()]:
        assert com.pubshare(x) == f(x) * G


def test_vss_refresh_commitment():
    for scheme in [FeldmanScheme(), PedersenScheme()]:
        for t in range(1, 4):
            f = Polynomial.generate(t - 1, force_zero_constant=True)
            h = None
            if scheme.masking:
                h = Polynomial.generate(t - 1, force_zero_constant=True)
            com = scheme.commit(f, h, offset=1)
            # The zero constant term is not committed to.
            assert com.offset == 1
            assert len(com.ges) == t - 1
            assert com.t() == t
            for i in range(1, 4):
                x = Scalar(i)
                y_mask = h(x) if h is not None else None
                assert scheme.verify(com, Evaluation(x, f(x), y_mask))


def test_vss_accumulate():
    f = Polynomial.generate(2)
    g = Polynomial.generate(2, force_zero_constant=True)
    com = FeldmanScheme().commit(f)
    refreshed = com.accumulate(FeldmanScheme().commit(g, offset=1))
    assert refreshed.commitment_to_secret() == com.commitment_to_secret()
    for i in range(1, 4):
        x = Scalar(i)
        assert refreshed.pubshare(x) == (f(x) + g(x)) * G

    assert com + com == FeldmanScheme().commit(Polynomial([c + c for c in f.coeffs]))
    assert com.to_bytes() != refreshed.to_bytes()


def test_pedersen_scheme():
    scheme = PedersenScheme()
    f = Polynomial.generate(1)
    h = Polynomial.generate(1)
    com = scheme.commit(f, h)
    assert com.ges[0] == f.coeffs[0] * G + h.coeffs[0] * H
    x = Scalar(2)
    assert not scheme.verify(com, Evaluation(x, f(x)))
    assert not scheme.verify(com, Evaluation(x, f(x), h(x) + Scalar(1)))

    for masking in [None, Polynomial.generate(2)]:
        try:
            scheme.commit(f, masking)
        except ConfigurationError:
            pass
        else:
            assert False, "Expected exception"


def test_network():
    network = Network()
    channels = [network.channel(i) for i in range(1, 4)]
    channels[0].connect(2)
    channels[0].connect(3)
    channels[1].connect(3)
    # Links are bidirectional.
    assert channels[1].connected() == [1, 3]
    assert channels[2].connected() == [1, 2]

    payload = EvaluationMsg(Evaluation(Scalar(1), Scalar(2)))
    channels[0].broadcast(payload)
    assert list(channels[0].receive()) == []
    assert list(channels[1].receive()) == [(1, payload)]
    assert list(channels[2].receive()) == [(1, payload)]
    # The inbox is drained by receiving.
    assert list(channels[1].receive()) == []

    channels[2].send(2, payload)
    assert list(channels[0].receive()) == []
    assert list(channels[1].receive()) == [(3, payload)]

    unconnected = network.channel(4)
    actions = [lambda: unconnected.send(1, payload), lambda: unconnected.connect(4)]
    for action in actions:
        try:
            action()
        except ConfigurationError:
            pass
        else:
            assert False, "Expected exception"


def test_peer_record():
    record = PeerRecord(2)
    try:
        record.require("evaluation", 1)
    except MissingDataError as e:
        assert e.participant == 1
        assert e.peer == 2
    else:
        assert False, "Expected exception"

    evaluation = Evaluation(Scalar(1), Scalar(5))
    record.store("evaluation", evaluation, 1)
    assert record.require("evaluation", 1) == evaluation
    try:
        record.store("evaluation", evaluation, 1)
    except IntegrityError as e:
        assert e.peer == 2
    else:
        assert False, "Expected exception"

    for field in PeerRecord.FIELDS:
        if field != "evaluation":
            record.store(field, object(), 1)
    try:
        record.require("secshare", 1)
    except AssertionError:
        pass
    else:
        assert False, "Expected exception"


def test_recover_secret():
    f = Polynomial([Scalar(23), Scalar(42)])
    shares = [f(Scalar(i)) for i in [1, 2, 3]]
    assert recover_secret([1, 2], [shares[0], shares[1]]) == f.coeffs[0]
    assert recover_secret([1, 3], [shares[0], shares[2]]) == f.coeffs[0]
    assert recover_secret([2, 3], [shares[1], shares[2]]) == f.coeffs[0]


#
# Full sessions
#


def check_correctness(dkg: DKG, public_key: GE):
    t, n = dkg.t, dkg.n

    # All parties agree on the public key.
    for party in dkg.parties:
        assert party.public_key == public_key

    # Every t-subset of the shares recovers the same secret, which is the
    # discrete logarithm of the public key.
    secrets = set()
    for tsubset in combinations(range(1, n + 1), t):
        recovered = recover_from(dkg, tsubset)
        assert recovered * G == public_key
        secrets.add(int(recovered))
    assert len(secrets) == 1
    secret = Scalar(secrets.pop())

    # Fewer than t shares do not recover the secret.
    if t > 1:
        assert recover_from(dkg, range(1, t)) != secret

    # Each secret share matches the corresponding public share.
    outputs = dkg.outputs()
    for i in range(n):
        assert outputs[i].public_key == public_key.to_bytes_compressed()
        assert outputs[i].pubshares == outputs[0].pubshares
        secshare = Scalar.from_bytes_checked(outputs[i].secshare)
        assert secshare * G == GE.from_bytes_compressed(outputs[0].pubshares[i])
    return secret


def test_correctness():
    for t, n in [(1, 1), (1, 2), (2, 2), (2, 3), (2, 5), (3, 4)]:
        dkg = DKG(t, n)
        public_key = dkg.keygen()
        check_correctness(dkg, public_key)
        assert all(p.state is PartyState.PUBLIC_KEY_COMPUTED for p in dkg.parties)


def test_concrete_scenario():
    dkg = DKG(2, 3)
    public_key = dkg.keygen()

    secret_12 = recover_from(dkg, [1, 2])
    secret_23 = recover_from(dkg, [2, 3])
    assert secret_12 == secret_23
    for party in dkg.parties:
        assert secret_12 * G == party.public_key
    assert dkg.public_key == public_key


def test_refresh():
    for t, n in [(2, 3), (3, 5)]:
        dkg = DKG(t, n)
        public_key = dkg.keygen()
        secret = check_correctness(dkg, public_key)

        for epoch in range(1, 3):
            old_secshares = secshares_of(dkg)
            dkg.refresh()
            assert dkg.epoch == epoch
            new_secshares = secshares_of(dkg)

            # Every share changed, the secret and the public key did not.
            for old, new in zip(old_secshares, new_secshares):
                assert old != new
            assert check_correctness(dkg, public_key) == secret
            for party in dkg.parties:
                assert party.epoch == epoch
                assert party.state is PartyState.SHARE_COMPUTED
                assert party.public_key == public_key

            # Shares from different epochs cannot be combined.
            mixed = [old_secshares[0]] + new_secshares[1:t]
            assert recover_secret(list(range(1, t + 1)), mixed) != secret


def test_pedersen():
    dkg = DKG(2, 3, scheme=PedersenScheme())
    public_key = dkg.keygen()
    secret = check_correctness(dkg, public_key)
    for party in dkg.parties:
        for record in party.peers.values():
            assert record.masked is not None
            assert record.evaluation.y_mask is not None

    old_secshares = secshares_of(dkg)
    dkg.refresh()
    assert all(old != new for old, new in zip(old_secshares, secshares_of(dkg)))
    assert check_correctness(dkg, public_key) == secret


def test_state_machine():
    dkg = DKG(2, 3)
    party = dkg.parties[0]
    assert party.state is PartyState.INIT

    for action in [party.broadcast, party.verify_evaluations, party.prepare_refresh]:
        try:
            action()
        except ProtocolStateError:
            pass
        else:
            assert False, "Expected exception"

    for action in [dkg.refresh, dkg.outputs]:
        try:
            action()
        except ProtocolStateError:
            pass
        else:
            assert False, "Expected exception"

    public_key = dkg.keygen()
    try:
        dkg.keygen()
    except ProtocolStateError:
        pass
    else:
        assert False, "Expected exception"

    dkg.refresh()
    # The public key is computed in epoch 0 only.
    try:
        party.compute_public_key()
    except ProtocolStateError:
        pass
    else:
        assert False, "Expected exception"
    assert party.public_key == public_key


def test_step_by_step():
    dkg = DKG(2, 3)
    states = [
        PartyState.COMMITMENTS_READY,
        PartyState.BROADCAST,
        PartyState.KOSK_VERIFIED,
        PartyState.EVALUATIONS_SENT,
        PartyState.EVALUATIONS_VERIFIED,
        PartyState.SHARE_COMPUTED,
        PartyState.PUBLIC_KEY_COMPUTED,
    ]
    steps = [
        "prepare",
        "broadcast",
        "verify_kosks",
        "send_evaluations",
        "verify_evaluations",
        "compute_secret_share",
        "compute_public_key",
    ]
    for step, state in zip(steps, states):
        dkg.run_step(step)
        assert all(party.state is state for party in dkg.parties)

    # Every commitment vector covers all coefficients in epoch 0.
    for party in dkg.parties:
        assert len(party.commitment.ges) == len(party.f.coeffs)
        assert party.kosk is not None

    dkg.public_key = dkg.parties[0].public_key
    dkg.refresh()
    for party in dkg.parties:
        assert len(party.commitment.ges) == len(party.f.coeffs) - 1
        assert party.kosk is None


#
# Faulty participants
#


def faulty_party_cls(faulty_idx, cls):
    def party_cls(idx, *args):
        if idx == faulty_idx:
            return cls(idx, *args)
        return Party(idx, *args)

    return party_cls


def test_tampered_commitment():
    dkg = DKG(2, 3, party_cls=faulty_party_cls(1, FaultyParty))
    for step in ["prepare", "broadcast", "verify_kosks", "send_evaluations"]:
        dkg.run_step(step)

    # Every honest receiver detects the tampered commitment.
    for party in dkg.parties[1:]:
        try:
            party.verify_evaluations()
        except VerificationError as e:
            assert e.participant == 1
            assert party.state is PartyState.ABORTED
        else:
            assert False, "Expected exception"
    dkg.parties[0].verify_evaluations()

    # The whole run aborts with the first detected error.
    for faulty_idx in [1, 3]:
        dkg = DKG(2, 3, party_cls=faulty_party_cls(faulty_idx, FaultyParty))
        try:
            dkg.keygen()
        except VerificationError as e:
            assert e.participant == faulty_idx
        else:
            assert False, "Expected exception"
        assert dkg.aborted
        assert dkg.public_key is None

        # An aborted run cannot be continued.
        for action in [dkg.keygen, dkg.refresh]:
            try:
                action()
            except ProtocolStateError:
                pass
            else:
                assert False, "Expected exception"


class RefreshFaultyParty(Party):
    # Honest during key generation, tampers with its refresh commitment.
    def _setup(self) -> None:
        super()._setup()
        if self.epoch > 0:
            self.commitment.ges[0] = self.commitment.ges[0] + G


def test_tampered_refresh_commitment():
    for scheme in [None, PedersenScheme()]:
        party_cls = faulty_party_cls(2, RefreshFaultyParty)
        dkg = DKG(2, 3, scheme=scheme, party_cls=party_cls)
        dkg.keygen()
        try:
            dkg.refresh()
        except VerificationError as e:
            assert e.participant == 2
        else:
            assert False, "Expected exception"
        assert dkg.aborted

        # A refresh of an aborted session does not advance the epoch.
        try:
            dkg.refresh()
        except ProtocolStateError:
            pass
        else:
            assert False, "Expected exception"
        assert dkg.epoch == 1


class SkewedKeyParty(Party):
    # Passes every check, but ends up with a different public key.
    def compute_public_key(self) -> GE:
        public_key = super().compute_public_key() + G
        self.public_key = public_key
        return public_key


def test_inconsistent_outputs():
    dkg = DKG(2, 3, party_cls=faulty_party_cls(2, SkewedKeyParty))
    try:
        dkg.keygen()
    except VerificationError as e:
        assert e.participant is None
    else:
        assert False, "Expected exception"
    assert dkg.aborted
    assert dkg.public_key is None
    assert all(party.state is PartyState.ABORTED for party in dkg.parties)

    # The diverging outputs of the failed run are not handed out.
    try:
        dkg.outputs()
    except ProtocolStateError:
        pass
    else:
        assert False, "Expected exception"


class WrongKoskParty(Party):
    # Proves knowledge of a secret unrelated to its commitment.
    def _setup(self) -> None:
        super()._setup()
        self.kosk = kosk_prove(random_scalar(), self.curve, self.schnorr)


class WrongCurveKoskParty(Party):
    def _setup(self) -> None:
        super()._setup()
        self.kosk = self.kosk._replace(curve=P256)


def test_invalid_kosk():
    dkg = DKG(2, 3, party_cls=faulty_party_cls(3, WrongKoskParty))
    try:
        dkg.keygen()
    except VerificationError as e:
        assert e.participant == 3
    else:
        assert False, "Expected exception"
    assert dkg.parties[0].state is PartyState.ABORTED

    dkg = DKG(2, 3, party_cls=faulty_party_cls(2, WrongCurveKoskParty))
    try:
        dkg.keygen()
    except CurveMismatchError:
        pass
    else:
        assert False, "Expected exception"
    assert dkg.aborted


class ShortCommitmentParty(Party):
    # Drops the commitment to its highest coefficient.
    def _setup(self) -> None:
        super()._setup()
        self.commitment = VSSCommitment(self.commitment.ges[:-1])


class DuplicateBroadcastParty(Party):
    def broadcast(self) -> None:
        self.channel.broadcast(CommitmentsMsg(self.commitment, self.masked))
        super().broadcast()


def test_integrity():
    for cls in [ShortCommitmentParty, DuplicateBroadcastParty]:
        dkg = DKG(3, 4, party_cls=faulty_party_cls(2, cls))
        try:
            dkg.keygen()
        except IntegrityError as e:
            assert e.peer == 2
        else:
            assert False, "Expected exception"


class SilentKoskParty(Party):
    def broadcast(self) -> None:
        self.kosk = None
        super().broadcast()


class SilentEvaluationParty(Party):
    # Does not send any evaluations.
    def send_evaluations(self) -> None:
        self._expect(PartyState.KOSK_VERIFIED)
        self.state = PartyState.EVALUATIONS_SENT


def test_missing_data():
    for cls in [SilentKoskParty, SilentEvaluationParty]:
        dkg = DKG(2, 3, party_cls=faulty_party_cls(3, cls))
        try:
            dkg.keygen()
        except MissingDataError as e:
            assert e.peer == 3
            assert e.participant != 3
        else:
            assert False, "Expected exception"
        assert dkg.aborted


#
# Example session
#


def test_example_simulation():
    for pedersen in [False, True]:
        public_key, outputs = simulate_dkg_full(2, 3, 2, pedersen=pedersen)
        assert len(outputs) == 3
        for epoch_outputs in outputs:
            assert len(epoch_outputs) == 3
            assert all(out.public_key == public_key for out in epoch_outputs)
        # Secret shares change with every epoch.
        for i in range(3):
            assert len({outs[i].secshare for outs in outputs}) == 3

    try:
        simulate_dkg_full(2, 3, 1, faulty_idx=2)
    except VerificationError as e:
        assert e.participant == 2
    else:
        assert False, "Expected exception"


if __name__ == "__main__":
    for name, test in list(globals().items()):
        if name.startswith("test_") and callable(test):
            test()
