"""
Signing for chain transactions and private relay requests.
Transactions are EIP-1559 signed locally; relay requests carry an
X-Flashbots-Signature header over the keccak of the request body.
"""

from typing import Any, Optional

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import keccak, to_checksum_address


def _to_hex(value: bytes) -> str:
    return "0x" + bytes(value).hex()


class TransactionSigner:
    """Holds the operator key and an optional separate relay identity key."""

    def __init__(
        self,
        private_key: str,
        chain_id: int = 1,
        relay_signing_key: Optional[str] = None,
    ):
        self.account = Account.from_key(private_key)
        self.address = self.account.address
        self.chain_id = chain_id
        self.relay_account = (
            Account.from_key(relay_signing_key) if relay_signing_key else self.account
        )

    def sign_transaction(
        self,
        to: str,
        data: str,
        nonce: int,
        gas: int,
        max_fee_per_gas: int,
        max_priority_fee_per_gas: int,
        value: int = 0,
    ) -> tuple[str, str]:
        """
        Sign an EIP-1559 transaction.

        Returns (raw transaction hex, transaction hash hex).
        """
        tx: dict[str, Any] = {
            "type": 2,
            "chainId": self.chain_id,
            "nonce": nonce,
            "to": to_checksum_address(to),
            "value": value,
            "data": data,
            "gas": gas,
            "maxFeePerGas": max_fee_per_gas,
            "maxPriorityFeePerGas": max_priority_fee_per_gas,
        }
        signed = self.account.sign_transaction(tx)
        return _to_hex(signed.raw_transaction), _to_hex(signed.hash)

    def get_relay_headers(self, body: str) -> dict[str, str]:
        """Authentication header for a relay JSON-RPC body."""
        digest = "0x" + keccak(text=body).hex()
        signed = self.relay_account.sign_message(encode_defunct(text=digest))
        return {
            "X-Flashbots-Signature": f"{self.relay_account.address}:{_to_hex(signed.signature)}"
        }
