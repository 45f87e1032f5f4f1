# chain_log_source.py
# Read-only access to one chain: receipts, block height, timestamps and event logs.

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Sequence, Union

import requests
from web3 import Web3
from web3.exceptions import TransactionNotFound, Web3Exception
from web3.types import LogReceipt, TxReceipt

Topic = Optional[Union[bytes, List[bytes]]]


class ChainSourceError(Exception):
    """Raised when a chain cannot be queried. The caller decides whether to retry."""
    def __init__(self, chain: str, action: str, cause: Exception):
        self.chain = chain
        self.action = action
        self.cause = cause
        super().__init__(f"{chain}: failed to {action}: {cause}")


# --- Blockchain Interaction ---

class BlockchainConnector:
    """
    Manages the connection to a blockchain node via Web3.py.

    All HTTP traffic goes through one `requests.Session`, so a connector can be
    shared by every record polled against the same chain.
    """
    def __init__(self, name: str, rpc_url: str, expected_chain_id: Optional[int] = None, timeout: int = 10):
        self.name = name
        self.rpc_url = rpc_url
        self.expected_chain_id = expected_chain_id
        self.timeout = timeout
        self.session = requests.Session()
        self.web3: Optional[Web3] = None
        self.connect()

    def connect(self):
        """Establishes a connection to the blockchain node."""
        try:
            provider = Web3.HTTPProvider(
                self.rpc_url,
                request_kwargs={"timeout": self.timeout},
                session=self.session,
                exception_retry_configuration=None,
            )
            self.web3 = Web3(provider)
            if not self.web3.is_connected():
                raise ConnectionError("Failed to connect to the node.")
            chain_id = self.web3.eth.chain_id
            logging.info(f"Successfully connected to {self.name} node at {self.rpc_url}. "
                         f"Chain ID: {chain_id}, Latest Block: {self.web3.eth.block_number}")
        except Exception as e:
            logging.error(f"Error connecting to {self.name} node: {e}")
            self.web3 = None
            return
        if self.expected_chain_id is not None and chain_id != self.expected_chain_id:
            self.web3 = None
            raise ValueError(f"{self.name} RPC at {self.rpc_url} serves chain {chain_id}, "
                             f"expected {self.expected_chain_id}")

    def is_connected(self) -> bool:
        """Checks if the connection to the node is active."""
        return self.web3 is not None and self.web3.is_connected()

    def get_web3_instance(self) -> Web3:
        """Returns the Web3 instance, ensuring it's connected."""
        if not self.is_connected():
            logging.warning(f"Connection to {self.name} lost. Attempting to reconnect...")
            self.connect()
        if self.web3 is None:
            raise ConnectionError(f"Unable to establish a connection to the {self.name} node.")
        return self.web3


class ChainLogSource:
    """
    Polls one chain for the data the packet correlator needs.

    Nothing is cached and nothing is retried: every call is a fresh round trip,
    and any transport or node failure surfaces as ChainSourceError.
    """
    def __init__(self, connector: BlockchainConnector, dispatcher_address: str, chunk_blocks: int = 1000):
        if chunk_blocks <= 0:
            raise ValueError("chunk_blocks must be positive")
        self.connector = connector
        self.name = connector.name
        self.dispatcher_address = Web3.to_checksum_address(dispatcher_address)
        self.chunk_blocks = chunk_blocks

    @contextmanager
    def _faults(self, action: str):
        try:
            yield
        except (requests.exceptions.RequestException, Web3Exception, ConnectionError) as e:
            raise ChainSourceError(self.name, action, e) from e

    def get_receipt(self, tx_id: str) -> Optional[TxReceipt]:
        """Returns the receipt, or None while the transaction is not yet mined."""
        with self._faults(f"fetch receipt {tx_id}"):
            w3 = self.connector.get_web3_instance()
            try:
                return w3.eth.get_transaction_receipt(tx_id)
            except TransactionNotFound:
                logging.debug(f"{self.name}: transaction {tx_id} not found yet.")
                return None

    def get_block_height(self) -> int:
        with self._faults("fetch block height"):
            return self.connector.get_web3_instance().eth.block_number

    def get_block_timestamp(self, block: Union[int, bytes, str]) -> int:
        with self._faults(f"fetch block {block!r}"):
            return int(self.connector.get_web3_instance().eth.get_block(block)["timestamp"])

    def query_logs(self, topics: Sequence[Topic], from_block: int, to_block: int) -> Iterator[LogReceipt]:
        """
        Yields dispatcher logs matching `topics` in ascending (block, log index) order.

        The range is fetched in chunks of `chunk_blocks`, one request per chunk,
        and only as far as the consumer keeps iterating. Both bounds are
        inclusive. The iterator is not restartable; query again to rescan.
        """
        if from_block > to_block:
            logging.debug(f"{self.name}: from_block ({from_block}) > to_block ({to_block}). No scan needed.")
            return
        topic_filter = [_hex_topic(t) for t in topics]
        start = from_block
        while start <= to_block:
            end = min(start + self.chunk_blocks - 1, to_block)
            logging.debug(f"{self.name}: scanning blocks {start}-{end} for topics {topic_filter}")
            with self._faults(f"query logs in blocks {start}-{end}"):
                logs = self.connector.get_web3_instance().eth.get_logs({
                    "address": self.dispatcher_address,
                    "fromBlock": start,
                    "toBlock": end,
                    "topics": topic_filter,
                })
            yield from sorted(logs, key=_log_position)
            start = end + 1


def _hex_topic(topic: Topic) -> Any:
    if topic is None:
        return None
    if isinstance(topic, list):
        return [Web3.to_hex(t) for t in topic]
    return Web3.to_hex(topic)


def _log_position(log: Dict[str, Any]):
    return log["blockNumber"], log["logIndex"]
