from collections import deque
from typing import Deque, Dict, Iterator, List, NamedTuple, Optional, Set, Tuple, Union

from .curve import CurveParams
from .schnorr import Signature
from .util import ConfigurationError
from .vss import Evaluation, VSSCommitment


###
### Messages
###


class KoskMsg(NamedTuple):
    signature: Signature
    # Curve of the signer that produced the proof
    curve: CurveParams


class CommitmentsMsg(NamedTuple):
    commitment: VSSCommitment
    # Feldman commitments to the coefficients when `commitment` is a Pedersen
    # commitment, None otherwise
    masked: Optional[VSSCommitment] = None


class EvaluationMsg(NamedTuple):
    evaluation: Evaluation


Payload = Union[KoskMsg, CommitmentsMsg, EvaluationMsg]


###
### Simulated network
###


class Network:
    """Static, fully synchronous in-process network.

    Every party obtains a `Channel` capability for its own index. Messages are
    delivered immediately into the inbox of the receiving channel, in the order
    they were sent. Neither loss nor reordering is modeled, and the sender of a
    message is always the owner of the channel it was sent through.
    """

    def __init__(self) -> None:
        self.channels: Dict[int, Channel] = {}

    def channel(self, idx: int) -> "Channel":
        if idx not in self.channels:
            self.channels[idx] = Channel(self, idx)
        return self.channels[idx]

    def deliver(self, sender: int, receiver: int, payload: Payload) -> None:
        self.channels[receiver].inbox.append((sender, payload))


class Channel:
    def __init__(self, network: Network, idx: int) -> None:
        self.network = network
        self.idx = idx
        self.peers: Set[int] = set()
        self.inbox: Deque[Tuple[int, Payload]] = deque()

    def connect(self, other: int) -> None:
        # Links are bidirectional.
        if other == self.idx:
            raise ConfigurationError(f"Participant {other} cannot connect to itself")
        self.peers.add(other)
        self.network.channel(other).peers.add(self.idx)

    def connected(self) -> List[int]:
        return sorted(self.peers)

    def send(self, to: int, payload: Payload) -> None:
        if to not in self.peers:
            raise ConfigurationError(
                f"Participant {self.idx} is not connected to participant {to}"
            )
        self.network.deliver(self.idx, to, payload)

    def broadcast(self, payload: Payload) -> None:
        for to in self.connected():
            self.network.deliver(self.idx, to, payload)

    def receive(self) -> Iterator[Tuple[int, Payload]]:
        # Drain the inbox.
        while self.inbox:
            yield self.inbox.popleft()
