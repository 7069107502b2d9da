"""Chain JSON-RPC / bundle relay / block header connector module."""

from .rpc_client import RpcClient, RpcError
from .relay_client import BundleRelay, BundleRelayClient, BundleSimulation
from .ws_client import BlockHeaderListener, BlockHeader
from .auth import TransactionSigner
from .contract_gateway import (
    ContractGateway,
    FeeEstimate,
    LoanRequest,
    RpcContractGateway,
    SignedTransaction,
    SimulationResult,
    TxReceipt,
)

__all__ = [
    "RpcClient",
    "RpcError",
    "BundleRelay",
    "BundleRelayClient",
    "BundleSimulation",
    "BlockHeaderListener",
    "BlockHeader",
    "TransactionSigner",
    "ContractGateway",
    "FeeEstimate",
    "LoanRequest",
    "RpcContractGateway",
    "SignedTransaction",
    "SimulationResult",
    "TxReceipt",
]
