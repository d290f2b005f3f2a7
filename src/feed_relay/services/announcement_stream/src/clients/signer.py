"""Signed connection parameters for the Binance announcement websocket."""

import hashlib
import hmac
import logging
import secrets
import string
from dataclasses import dataclass
from typing import Dict, Iterable, List, Tuple

logger = logging.getLogger(__name__)

NONCE_LENGTH = 32
NONCE_ALPHABET = string.ascii_lowercase + string.digits


def generate_nonce(length: int = NONCE_LENGTH) -> str:
    """Random lowercase alphanumeric string used as the `random` parameter."""
    return ''.join(secrets.choice(NONCE_ALPHABET) for _ in range(length))


def normalize_topics(topics: Iterable[str]) -> List[str]:
    """Drop blanks and duplicates, keeping first-seen order."""
    seen = []
    for topic in topics:
        topic = topic.strip()
        if topic and topic not in seen:
            seen.append(topic)
    return seen


@dataclass(frozen=True)
class ConnectionAuthorization:
    """One-shot authorization for a single connection attempt."""
    nonce: str
    topic: str
    recv_window: int
    timestamp: int
    signature: str

    def params(self) -> Dict[str, str]:
        """Signed parameters, excluding the signature."""
        return {
            'random': self.nonce,
            'recvWindow': str(self.recv_window),
            'timestamp': str(self.timestamp),
            'topic': self.topic,
        }

    def sorted_params(self) -> List[Tuple[str, str]]:
        return sorted(self.params().items())

    def query_string(self) -> str:
        """Wire query string: signed pairs in signing order, then signature."""
        pairs = self.sorted_params() + [('signature', self.signature)]
        return '&'.join(f"{key}={value}" for key, value in pairs)


class ConnectionSigner:
    """
    HMAC-SHA256 signer for websocket connection parameters.

    The canonical string is the `key=value` pairs of {random, recvWindow,
    timestamp, topic} sorted by key and joined with `&`. Neither the API key
    nor the signature takes part in it. The query string sent on the wire
    keeps exactly that order and appends `signature` last.
    """

    def __init__(self, api_secret: str, recv_window_ms: int = 30000):
        if not api_secret:
            raise ValueError("api_secret is required for signing")
        self._secret = api_secret.encode('utf-8')
        self.recv_window_ms = recv_window_ms

    def canonical_string(self, params: Dict[str, str]) -> str:
        return '&'.join(
            f"{key}={value}"
            for key, value in sorted(params.items())
            if key != 'signature'
        )

    def signature(self, params: Dict[str, str]) -> str:
        payload = self.canonical_string(params).encode('utf-8')
        return hmac.new(self._secret, payload, hashlib.sha256).hexdigest()

    def sign(self, topics: Iterable[str], timestamp_ms: int, nonce: str = None) -> ConnectionAuthorization:
        """Build a fresh authorization for one connection attempt."""
        topic = '|'.join(normalize_topics(topics))
        if not topic:
            raise ValueError("At least one topic is required")

        unsigned = ConnectionAuthorization(
            nonce=nonce or generate_nonce(),
            topic=topic,
            recv_window=self.recv_window_ms,
            timestamp=int(timestamp_ms),
            signature='',
        )
        signature = self.signature(unsigned.params())
        logger.debug(f"Signed connection parameters at timestamp {unsigned.timestamp}")

        return ConnectionAuthorization(
            nonce=unsigned.nonce,
            topic=unsigned.topic,
            recv_window=unsigned.recv_window,
            timestamp=unsigned.timestamp,
            signature=signature,
        )


def build_url(base_url: str, authorization: ConnectionAuthorization) -> str:
    """Append the signed query string to the websocket base address."""
    return f"{base_url}?{authorization.query_string()}"
