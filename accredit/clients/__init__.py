"""
Accredit — External Service Clients

The credential ledger (CredentialNFT over web3, or in-process) and the
IPFS metadata store.
"""

from accredit.clients.ledger import LedgerClient
from accredit.clients.memory_ledger import InMemoryLedger, InMemoryLedgerSession
from accredit.clients.metadata_store import MetadataStoreClient, gateway_url
from accredit.clients.web3_ledger import ContractArtifact, Web3LedgerClient, load_contract_artifact

__all__ = [
    "LedgerClient",
    "InMemoryLedger",
    "InMemoryLedgerSession",
    "MetadataStoreClient",
    "gateway_url",
    "ContractArtifact",
    "Web3LedgerClient",
    "load_contract_artifact",
]
