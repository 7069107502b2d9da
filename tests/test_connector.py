import asyncio
from contextlib import asynccontextmanager
from types import SimpleNamespace
from typing import Any, Optional

import pytest
from eth_abi import decode, encode
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import keccak

from flash_arb_bot.connector import (
    BundleRelayClient,
    FeeEstimate,
    LoanRequest,
    RpcClient,
    RpcContractGateway,
    RpcError,
    TransactionSigner,
)
from flash_arb_bot.connector.contract_gateway import (
    ERROR_SELECTOR,
    REQUEST_LOAN_SELECTOR,
    decode_revert_reason,
    encode_request_loan,
)
from flash_arb_bot.connector.ws_client import parse_header

from conftest import DEV_PRIVATE_KEY

WETH = "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2"
USDC = "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48"
CONTRACT = "0x5fbdb2315678afecb367f032d93f642f64180aa3"
GWEI = 10 ** 9


def make_request(**overrides) -> LoanRequest:
    fields = dict(
        asset=WETH,
        principal=10 ** 18,
        premium=5 * 10 ** 14,
        path1=(WETH, USDC),
        path2=(USDC, WETH),
        min_profit=0,
        hop1_venue=1,
        hop2_venues=(0, 2),
    )
    fields.update(overrides)
    return LoanRequest(**fields)


def revert_data(reason: str) -> str:
    return "0x" + (ERROR_SELECTOR + encode(["string"], [reason])).hex()


class ScriptedRpc(RpcClient):
    """RpcClient answering from a method -> result table."""

    def __init__(self, responses: dict[str, Any]):
        super().__init__("http://node.invalid")
        self.responses = responses
        self.calls: list[tuple[str, Optional[list]]] = []

    async def request(self, method: str, params: Optional[list] = None) -> Any:
        self.calls.append((method, params))
        result = self.responses.get(method)
        if isinstance(result, RpcError):
            raise result
        return result


def make_gateway(responses: dict[str, Any], gas_limit: int = 800_000) -> RpcContractGateway:
    return RpcContractGateway(
        rpc=ScriptedRpc(responses),
        signer=TransactionSigner(DEV_PRIVATE_KEY, chain_id=1),
        contract_address=CONTRACT,
        gas_limit=gas_limit,
    )


class TestCalldata:
    def test_selector_and_arguments(self):
        calldata = encode_request_loan(make_request())

        assert calldata.startswith("0x" + REQUEST_LOAN_SELECTOR.hex())
        raw = bytes.fromhex(calldata[2:])[4:]
        asset, principal, path1, path2, min_profit, hop1, hop2 = decode(
            ["address", "uint256", "address[]", "address[]", "uint256", "uint8", "uint8[]"],
            raw,
        )
        assert asset.lower() == WETH
        assert principal == 10 ** 18
        assert [a.lower() for a in path1] == [WETH, USDC]
        assert [a.lower() for a in path2] == [USDC, WETH]
        assert min_profit == 0
        assert hop1 == 1
        assert list(hop2) == [0, 2]

    def test_revert_reason_decoded(self):
        assert decode_revert_reason(revert_data("Arbitrage not profitable")) == (
            "Arbitrage not profitable"
        )

    @pytest.mark.parametrize("data", [None, "", "0x", "0xdeadbeef", {"message": "x"}])
    def test_non_error_data_ignored(self, data):
        assert decode_revert_reason(data) is None


class TestSigner:
    def test_relay_header_recovers_to_signer(self):
        signer = TransactionSigner(DEV_PRIVATE_KEY)
        body = '{"jsonrpc":"2.0","id":1,"method":"eth_sendBundle","params":[]}'

        header = signer.get_relay_headers(body)["X-Flashbots-Signature"]
        address, signature = header.split(":")

        digest = "0x" + keccak(text=body).hex()
        recovered = Account.recover_message(encode_defunct(text=digest), signature=signature)
        assert address == signer.address == recovered

    def test_separate_relay_identity(self):
        relay_key = "0x" + "11" * 32
        signer = TransactionSigner(DEV_PRIVATE_KEY, relay_signing_key=relay_key)

        address = signer.get_relay_headers("{}")["X-Flashbots-Signature"].split(":")[0]

        assert address == Account.from_key(relay_key).address != signer.address

    def test_signed_transaction_is_type_2(self):
        signer = TransactionSigner(DEV_PRIVATE_KEY, chain_id=1)
        raw, tx_hash = signer.sign_transaction(
            to=CONTRACT,
            data=encode_request_loan(make_request()),
            nonce=0,
            gas=300_000,
            max_fee_per_gas=30 * GWEI,
            max_priority_fee_per_gas=2 * GWEI,
        )
        assert raw.startswith("0x02")
        assert tx_hash.startswith("0x") and len(tx_hash) == 66

    def test_lowercase_destination_recovers_to_signer(self):
        signer = TransactionSigner(DEV_PRIVATE_KEY, chain_id=1)
        raw, tx_hash = signer.sign_transaction(
            to=CONTRACT,
            data="0x",
            nonce=3,
            gas=21_000,
            max_fee_per_gas=30 * GWEI,
            max_priority_fee_per_gas=2 * GWEI,
        )

        assert Account.recover_transaction(raw) == signer.address
        assert tx_hash == "0x" + keccak(hexstr=raw).hex()


class TestRpcContractGateway:
    async def test_simulate_returns_profit(self):
        gateway = make_gateway({
            "eth_call": "0x" + encode(["uint256"], [123]).hex(),
            "eth_estimateGas": hex(250_000),
        })

        result = await gateway.simulate(make_request())

        assert result.success
        assert result.profit == 123
        assert result.gas_used == 250_000
        method, params = gateway.rpc.calls[0]
        assert method == "eth_call"
        assert params[0]["to"] == CONTRACT
        assert params[1] == "pending"

    async def test_simulate_reports_revert_reason(self):
        gateway = make_gateway({
            "eth_call": RpcError(3, "execution reverted", revert_data("Profit below minimum")),
        })

        result = await gateway.simulate(make_request())

        assert not result.success
        assert result.revert_reason == "Profit below minimum"

    async def test_fee_estimate_adds_headroom(self):
        gateway = make_gateway({
            "eth_getBlockByNumber": {"baseFeePerGas": hex(10 * GWEI)},
            "eth_maxPriorityFeePerGas": hex(2 * GWEI),
            "eth_estimateGas": hex(250_000),
        })

        fee = await gateway.estimate_fee(make_request())

        assert fee.gas_limit == 300_000
        assert fee.max_fee_per_gas == 22 * GWEI
        assert fee.max_priority_fee_per_gas == 2 * GWEI
        assert fee.max_cost == 300_000 * 22 * GWEI

    async def test_fee_estimate_capped_and_falls_back(self):
        capped = make_gateway({
            "eth_getBlockByNumber": {"baseFeePerGas": hex(GWEI)},
            "eth_maxPriorityFeePerGas": hex(GWEI),
            "eth_estimateGas": hex(1_000_000),
        }, gas_limit=800_000)
        reverting = make_gateway({
            "eth_getBlockByNumber": {"baseFeePerGas": hex(GWEI)},
            "eth_maxPriorityFeePerGas": hex(GWEI),
            "eth_estimateGas": RpcError(3, "execution reverted"),
        }, gas_limit=700_000)

        assert (await capped.estimate_fee(make_request())).gas_limit == 800_000
        assert (await reverting.estimate_fee(make_request())).gas_limit == 700_000

    async def test_receipt_profit_from_event(self):
        topic = "0x" + keccak(
            text="ArbitrageExecuted(address,uint256,uint256,uint256,uint8)"
        ).hex()
        data = encode(
            ["address", "uint256", "uint256", "uint256", "uint8"],
            [WETH, 10 ** 18, 5 * 10 ** 14, 42, 1],
        )
        gateway = make_gateway({
            "eth_getTransactionReceipt": {
                "transactionHash": "0xabc",
                "status": "0x1",
                "blockNumber": hex(100),
                "gasUsed": hex(250_000),
                "effectiveGasPrice": hex(20 * GWEI),
                "logs": [
                    {"address": USDC, "topics": [topic], "data": "0x" + data.hex()},
                    {"address": CONTRACT.upper().replace("0X", "0x"), "topics": [topic],
                     "data": "0x" + data.hex()},
                ],
            },
        })

        receipt = await gateway.get_receipt("0xabc")

        assert receipt.succeeded
        assert receipt.block_number == 100
        assert receipt.profit == 42
        assert receipt.gas_spent == 250_000 * 20 * GWEI

    async def test_missing_receipt(self):
        gateway = make_gateway({"eth_getTransactionReceipt": None})
        assert await gateway.get_receipt("0xabc") is None

    async def test_build_signed_uses_pending_nonce(self):
        gateway = make_gateway({"eth_getTransactionCount": hex(7)})
        fee = FeeEstimate(gas_limit=300_000, max_fee_per_gas=22 * GWEI, max_priority_fee_per_gas=2 * GWEI)

        signed = await gateway.build_signed(make_request(), fee)

        assert gateway.rpc.calls == [("eth_getTransactionCount", [gateway.signer.address, "pending"])]
        assert Account.recover_transaction(signed.raw) == gateway.signer.address
        assert signed.request == make_request()


class ScriptedRelay(BundleRelayClient):
    """Relay client answering from a method -> result table."""

    def __init__(self, responses: dict[str, Any]):
        super().__init__(TransactionSigner(DEV_PRIVATE_KEY), relay_url="http://relay.invalid")
        self.responses = responses

    async def _request(self, method: str, params: list) -> Any:
        return self.responses.get(method)


class TestBundleRelayClient:
    async def test_simulation_reports_first_failing_tx(self):
        relay = ScriptedRelay({"eth_callBundle": {
            "totalGasUsed": 250_000,
            "results": [{"txHash": "0x1"}, {"txHash": "0x2", "revert": "Profit below minimum"}],
        }})

        simulation = await relay.simulate_bundle(["0x02aa", "0x02bb"], 100)

        assert not simulation.success
        assert simulation.error == "Profit below minimum"
        assert simulation.gas_used == 250_000

    async def test_null_simulation_result_is_a_failure(self):
        relay = ScriptedRelay({"eth_callBundle": None})

        simulation = await relay.simulate_bundle(["0x02aa"], 100)

        assert not simulation.success
        assert simulation.error == "Relay returned no simulation result"

    async def test_null_send_result_has_no_bundle_hash(self):
        relay = ScriptedRelay({"eth_sendBundle": None})
        assert await relay.send_bundle(["0x02aa"], 101) == ""

    async def test_send_returns_bundle_hash(self):
        relay = ScriptedRelay({"eth_sendBundle": {"bundleHash": "0xbeef"}})
        assert await relay.send_bundle(["0x02aa"], 101) == "0xbeef"


class RateLimitedSession:
    """HTTP session stub that answers every POST with 429."""

    closed = False

    def __init__(self):
        self.posts = 0

    @asynccontextmanager
    async def post(self, url, headers=None, data=None):
        self.posts += 1
        yield SimpleNamespace(status=429)


class TestRpcClient:
    async def test_rate_limit_exhaustion_raises_rpc_error(self, monkeypatch):
        delays = []

        async def no_sleep(seconds):
            delays.append(seconds)

        monkeypatch.setattr(asyncio, "sleep", no_sleep)
        client = RpcClient("http://node.invalid", max_retries=3, retry_backoff_base=2.0)
        client._session = RateLimitedSession()

        with pytest.raises(RpcError) as excinfo:
            await client.request("eth_blockNumber")

        assert excinfo.value.code == 429
        assert client._session.posts == 3
        assert delays == [1.0, 2.0, 4.0]


def test_parse_header():
    header = parse_header({
        "number": "0x10",
        "hash": "0xfeed",
        "timestamp": "0x64",
        "baseFeePerGas": hex(15 * GWEI),
    })

    assert header.number == 16
    assert header.hash == "0xfeed"
    assert header.timestamp == 100
    assert header.base_fee == 15 * GWEI
