"""On-chain side of the payout: the impact evaluator contract and the signer.

The contract is treated as an opaque value-transfer service:
- addBalances(address[], uint256[]) payable: schedule rewards on chain
- rewardsScheduledFor(address) view: rewards already held for an address
"""

from __future__ import annotations

from typing import Any, Protocol, Sequence

import bittensor as bt
from eth_account import Account
from eth_utils import keccak, to_checksum_address
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import TimeExhausted

from spark_rewards.ledger.models import SignaturePayload
from spark_rewards.ledger.signer import sign_digest

IMPACT_EVALUATOR_ABI: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "addBalances",
        "stateMutability": "payable",
        "inputs": [
            {"name": "addresses", "type": "address[]"},
            {"name": "_balances", "type": "uint256[]"},
        ],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "rewardsScheduledFor",
        "stateMutability": "view",
        "inputs": [{"name": "addr", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
]


def transaction_hash(raw: bytes) -> str:
    """Hash of a signed raw transaction, known before it is broadcast."""
    return "0x" + keccak(raw).hex()


class TransferFailed(Exception):
    """The addBalances transaction was mined but reverted."""

    def __init__(self, tx_hash: str):
        self.tx_hash = tx_hash
        super().__init__(f"Transaction {tx_hash} reverted")


class PayoutSigner(Protocol):
    """Signs payout transactions and batch digests.

    Calls may block (a hardware wallet waits for a button press) and must
    only be issued through a SignerQueue.
    """

    address: str
    interactive: bool

    def sign_transaction(self, tx: dict[str, Any]) -> bytes:
        ...

    def sign_digest(self, digest: str) -> SignaturePayload:
        ...


class LocalSigner:
    """Signer backed by a private key or mnemonic held in memory."""

    interactive = False

    def __init__(self, account: Any):
        self._account = account
        self.address = account.address

    @classmethod
    def from_key(cls, private_key: str) -> LocalSigner:
        return cls(Account.from_key(private_key))

    @classmethod
    def from_mnemonic(cls, seed: str) -> LocalSigner:
        Account.enable_unaudited_hdwallet_features()
        return cls(Account.from_mnemonic(seed))

    def sign_transaction(self, tx: dict[str, Any]) -> bytes:
        return bytes(self._account.sign_transaction(tx).raw_transaction)

    def sign_digest(self, digest: str) -> SignaturePayload:
        return sign_digest(digest, self._account.key)


class ImpactEvaluator:
    """Thin async wrapper over the impact evaluator contract."""

    def __init__(self, w3: AsyncWeb3, contract_address: str, receipt_timeout: float = 600.0):
        self.w3 = w3
        self.contract = w3.eth.contract(
            address=to_checksum_address(contract_address), abi=IMPACT_EVALUATOR_ABI,
        )
        self.receipt_timeout = receipt_timeout

    @classmethod
    def from_rpc(cls, rpc_url: str, contract_address: str, token: str | None = None) -> ImpactEvaluator:
        request_kwargs: dict[str, Any] = {}
        if token:
            request_kwargs["headers"] = {"Authorization": f"Bearer {token}"}
        w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url, request_kwargs=request_kwargs))
        return cls(w3, contract_address)

    async def rewards_scheduled_for(self, address: str) -> int:
        return int(await self.contract.functions.rewardsScheduledFor(
            to_checksum_address(address),
        ).call())

    async def build_add_balances(
        self, sender: str, addresses: Sequence[str], amounts: Sequence[int],
    ) -> dict[str, Any]:
        """Unsigned addBalances transaction with value = sum(amounts)."""
        sender = to_checksum_address(sender)
        return await self.contract.functions.addBalances(
            [to_checksum_address(a) for a in addresses],
            [int(a) for a in amounts],
        ).build_transaction({
            "from": sender,
            "value": sum(amounts),
            "nonce": await self.w3.eth.get_transaction_count(sender, "pending"),
            "chainId": await self.w3.eth.chain_id,
        })

    async def send_raw(self, raw: bytes) -> str:
        """Broadcast a signed transaction. Rebroadcasting the same bytes is harmless."""
        tx_hash = transaction_hash(raw)
        try:
            await self.w3.eth.send_raw_transaction(raw)
        except Exception as e:
            if "already known" not in str(e).lower():
                raise
            bt.logging.info({"chain": {"event": "already_known", "tx": tx_hash}})
        return tx_hash

    async def wait_for_confirmation(self, tx_hash: str) -> dict[str, Any]:
        """Block until the transaction is mined; raise TransferFailed if it reverted."""
        while True:
            try:
                receipt = await self.w3.eth.wait_for_transaction_receipt(
                    tx_hash, timeout=self.receipt_timeout,
                )
                break
            except TimeExhausted:
                bt.logging.warning({"chain": {"event": "still_waiting", "tx": tx_hash}})
        if receipt["status"] != 1:
            raise TransferFailed(tx_hash)
        return dict(receipt)

    async def close(self) -> None:
        provider = self.w3.provider
        disconnect = getattr(provider, "disconnect", None)
        if disconnect is not None:
            await disconnect()


__all__ = [
    "IMPACT_EVALUATOR_ABI",
    "ImpactEvaluator",
    "LocalSigner",
    "PayoutSigner",
    "TransferFailed",
    "transaction_hash",
]
