#!/usr/bin/env python3

"""Example of a full DKG session with proactive refreshes"""

from typing import List, Optional, Tuple
import argparse
import logging
import pprint
from random import randint
import sys

from secp256k1lab.secp256k1 import G

from proactive_dkg.dkg import (
    DKG,
    DKGOutput,
    Party,
    PedersenScheme,
    VerificationError,
)

#
# Helper functions
#


def pphex(thing):
    """Pretty print an object with bytes as hex strings"""

    def hexlify(thing):
        if isinstance(thing, bytes):
            return thing.hex()
        if isinstance(thing, dict):
            return {k: hexlify(v) for k, v in thing.items()}
        if hasattr(thing, "_asdict"):  # NamedTuple
            return hexlify(thing._asdict())
        if isinstance(thing, List):
            return [hexlify(v) for v in thing]
        return thing

    pprint.pp(hexlify(thing))


#
# Protocol parties
#


# This is a dummy participant used to demonstrate the abort behavior. It
# tampers with the commitment to its highest coefficient before broadcasting,
# so the shares it sends do not match its commitment anymore.
class FaultyParty(Party):
    def _setup(self) -> None:
        super()._setup()
        assert self.commitment is not None
        if self.commitment.ges:
            self.commitment.ges[-1] = self.commitment.ges[-1] + G


#
# DKG Session
#


def simulate_dkg_full(
    t: int,
    n: int,
    refreshes: int,
    faulty_idx: Optional[int] = None,
    pedersen: bool = False,
) -> Tuple[bytes, List[List[DKGOutput]]]:
    # The outputs of all parties are collected after key generation and after
    # every refresh.
    def party_cls(idx, *args):
        if idx == faulty_idx:
            return FaultyParty(idx, *args)
        return Party(idx, *args)

    scheme = PedersenScheme() if pedersen else None
    dkg = DKG(t, n, scheme=scheme, party_cls=party_cls)
    public_key = dkg.keygen()
    outputs = [dkg.outputs()]
    for _ in range(refreshes):
        dkg.refresh()
        outputs += [dkg.outputs()]
    return public_key.to_bytes_compressed(), outputs


def main():
    parser = argparse.ArgumentParser(description="Proactive DKG example")
    parser.add_argument(
        "--faulty-participant",
        action="store_true",
        help="When this flag is set, one random participant will broadcast an invalid commitment, and the session will abort.",
    )
    parser.add_argument(
        "--pedersen",
        action="store_true",
        help="Use Pedersen instead of Feldman commitments.",
    )
    parser.add_argument(
        "--refreshes",
        type=int,
        default=1,
        help="Number of share refreshes after key generation [default = 1]",
    )
    parser.add_argument("--verbose", action="store_true", help="Log protocol steps.")
    parser.add_argument(
        "t", nargs="?", type=int, default=2, help="Threshold [default = 2]"
    )
    parser.add_argument(
        "n", nargs="?", type=int, default=3, help="Number of participants [default = 3]"
    )
    args = parser.parse_args()
    t = args.t
    n = args.n
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG)
    if args.faulty_participant:
        faulty_idx = randint(1, n)
    else:
        faulty_idx = None

    print("====== Proactive DKG example session ======")
    print(f"Using n = {n} participants and a threshold of t = {t}.")
    if faulty_idx is not None:
        print(f"Participant {faulty_idx} is faulty.")
    print()

    try:
        public_key, outputs = simulate_dkg_full(
            t, n, args.refreshes, faulty_idx, args.pedersen
        )
    except VerificationError as e:
        print(f"A participant has failed and is blaming participant {e.participant}.")
        # If the blamed participant is the faulty participant, exit with code 0.
        # Otherwise, re-raise the exception.
        if faulty_idx == e.participant:
            return 0
        else:
            raise

    print(f"=== Public key ===\n{public_key.hex()}")
    print()

    for epoch, epoch_outputs in enumerate(outputs):
        for i in range(n):
            print(f"=== Participant {i + 1}'s output in epoch {epoch} ===")
            pphex(epoch_outputs[i])
            print()

    # The public key never changes, the secret shares do.
    assert all(out.public_key == public_key for outs in outputs for out in outs)
    return 0


if __name__ == "__main__":
    sys.exit(main())
