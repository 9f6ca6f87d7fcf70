"""
Accredit — Web3 Ledger Client (CredentialNFT over JSON-RPC)

Production LedgerClient for the CredentialNFT contract on an EVM node,
built on web3.py's AsyncWeb3.

Contract surface used:
  queries    proposalCount, getProposalInfo, hasVoted, isUniversity,
             ownerOf, tokenURI
  mutations  addUniversity, proposeCredential, voteOnCredential, mintCredential
  events     CredentialVoted, Transfer

The ABI and deployed address come from the Truffle build artifact
(``build/contracts/CredentialNFT.json``). With no address or network id
configured, the latest deployment in the artifact is used.

Transactions are simulated with ``eth_call`` first so a revert surfaces
its reason, then signed locally (private key configured) or sent from an
unlocked node account.

Error translation:
  ContractLogicError, receipt status 0   → LedgerRejected(reason)
  malformed address argument             → ValidationError (nothing sent)
  anything else (connection, timeout)    → LedgerUnavailable

Lifecycle: construct → connect() → use → close().
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Awaitable
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar

import structlog
from eth_account import Account
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import ContractLogicError
from web3.logs import DISCARD

from accredit.clients.ledger import LedgerClient
from accredit.errors import LedgerError, LedgerRejected, LedgerUnavailable, ValidationError
from accredit.primitives.common import same_address
from accredit.primitives.ledger import (
    CredentialToken,
    LedgerEvent,
    Proposal,
    TokenTransferred,
    VoteCast,
)

if TYPE_CHECKING:
    from eth_account.signers.local import LocalAccount

    from accredit.config import LedgerConfig

logger = structlog.get_logger("accredit.clients.web3_ledger")

T = TypeVar("T")

_REVERT_PREFIX = "execution reverted: "


@dataclass(frozen=True, slots=True)
class ContractArtifact:
    abi: list[dict[str, Any]]
    address: str


def load_contract_artifact(path: str | Path, network_id: str | None = None) -> ContractArtifact:
    """
    Read ABI and deployed address from a Truffle artifact.

    With no ``network_id`` the last entry under ``networks`` wins.
    """
    artifact_path = Path(path)
    if not artifact_path.exists():
        raise FileNotFoundError(f"Contract artifact not found: {artifact_path}")

    data = json.loads(artifact_path.read_text())
    networks: dict[str, Any] = data.get("networks") or {}

    entry: dict[str, Any] | None
    if network_id is not None:
        entry = networks.get(str(network_id))
    else:
        entry = networks[list(networks)[-1]] if networks else None

    return ContractArtifact(abi=data["abi"], address=(entry or {}).get("address", ""))


def _revert_reason(exc: ContractLogicError) -> str:
    reason = getattr(exc, "message", None) or str(exc) or "execution reverted"
    if reason.startswith(_REVERT_PREFIX):
        reason = reason[len(_REVERT_PREFIX):]
    return reason


def _checksum(address: str, field: str) -> str:
    try:
        return AsyncWeb3.to_checksum_address(address)
    except (ValueError, TypeError) as exc:
        raise ValidationError(f"invalid {field} address: {address!r}", fields=[field]) from exc


class Web3LedgerClient(LedgerClient):
    """Async CredentialNFT client."""

    def __init__(self, config: LedgerConfig, w3: AsyncWeb3 | None = None) -> None:
        self._config = config
        self._w3 = w3
        self._contract: Any = None
        self._abi: list[dict[str, Any]] = []
        self._signer: LocalAccount | None = None
        self.sender: str | None = None
        self._tx_lock = asyncio.Lock()
        self._logger = logger.bind(component="web3_ledger", rpc_url=config.rpc_url)

    # ── Lifecycle ─────────────────────────────────────────────

    async def connect(self) -> None:
        """Build the provider and contract handle, and resolve the sender."""
        if self._w3 is None:
            self._w3 = AsyncWeb3(AsyncHTTPProvider(self._config.rpc_url))

        artifact = load_contract_artifact(self._config.artifact_path, self._config.network_id)
        address = self._config.contract_address or artifact.address
        if not address:
            raise ValueError(
                f"No contract address configured and none deployed in {self._config.artifact_path}"
            )

        self._abi = artifact.abi
        self._contract = self._w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(address),
            abi=artifact.abi,
        )

        if self._config.private_key:
            self._signer = Account.from_key(self._config.private_key)
            self.sender = self._signer.address
        elif self._config.account:
            self.sender = AsyncWeb3.to_checksum_address(self._config.account)

        self._logger.info(
            "ledger_connected",
            contract=self._contract.address,
            sender=self.sender,
            local_signing=self._signer is not None,
        )

    async def close(self) -> None:
        if self._w3 is not None:
            disconnect = getattr(self._w3.provider, "disconnect", None)
            if disconnect is not None:
                await disconnect()

    # ── Internals ─────────────────────────────────────────────

    @property
    def _fn(self) -> Any:
        if self._contract is None:
            raise LedgerUnavailable("ledger client is not connected")
        return self._contract.functions

    @property
    def _events(self) -> Any:
        if self._contract is None:
            raise LedgerUnavailable("ledger client is not connected")
        return self._contract.events

    async def _guarded(self, op: str, awaitable: Awaitable[T], timeout: float | None = None) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=timeout or self._config.request_timeout_s)
        except ContractLogicError as exc:
            reason = _revert_reason(exc)
            self._logger.info("ledger_rejected", op=op, reason=reason)
            raise LedgerRejected(reason) from exc
        except LedgerError:
            raise
        except Exception as exc:
            self._logger.warning("ledger_unavailable", op=op, error=str(exc))
            raise LedgerUnavailable(f"{op}: {exc}") from exc

    def _named_outputs(self, fn_name: str, raw: Any) -> dict[str, Any]:
        """Map a call result onto the ABI's output (or struct component) names."""
        entry = next(
            (e for e in self._abi if e.get("type") == "function" and e.get("name") == fn_name),
            None,
        )
        if entry is None:
            raise LedgerUnavailable(f"ABI has no function {fn_name}")
        outputs = entry.get("outputs", [])
        if len(outputs) == 1 and outputs[0].get("type") == "tuple":
            names = [c["name"] for c in outputs[0].get("components", [])]
        else:
            names = [o.get("name", "") for o in outputs]
        if isinstance(raw, dict):
            return dict(raw)
        return dict(zip(names, raw, strict=False))

    def _require_sender(self) -> str:
        if not self.sender:
            raise LedgerRejected("no sender configured; set ledger.account or ledger.private_key")
        return self.sender

    async def _transact(self, op: str, call: Any) -> tuple[Any, Any]:
        """Simulate, send, and wait for ``call``. Returns (simulated result, receipt)."""
        sender = self._require_sender()
        assert self._w3 is not None

        async with self._tx_lock:
            simulated = await self._guarded(op, call.call({"from": sender}))
            if self._signer is not None:
                nonce = await self._guarded(
                    op, self._w3.eth.get_transaction_count(sender, "pending")
                )
                tx = await self._guarded(op, call.build_transaction({"from": sender, "nonce": nonce}))
                signed = self._signer.sign_transaction(tx)
                tx_hash = await self._guarded(op, self._w3.eth.send_raw_transaction(signed.raw_transaction))
            else:
                tx_hash = await self._guarded(op, call.transact({"from": sender}))

        receipt = await self._guarded(
            op,
            self._w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self._config.receipt_timeout_s),
            timeout=self._config.receipt_timeout_s + 5.0,
        )
        if receipt["status"] != 1:
            raise LedgerRejected(f"{op}: transaction reverted")

        self._logger.info("ledger_tx_mined", op=op, tx=tx_hash.hex(), block=receipt["blockNumber"])
        return simulated, receipt

    # ── Queries ───────────────────────────────────────────────

    async def block_number(self) -> int:
        if self._w3 is None:
            raise LedgerUnavailable("ledger client is not connected")
        return int(await self._guarded("block_number", self._w3.eth.block_number))

    async def proposal_count(self) -> int:
        return int(await self._guarded("proposalCount", self._fn.proposalCount().call()))

    async def get_proposal(self, proposal_id: int) -> Proposal:
        block = await self.block_number()
        raw = await self._guarded(
            "getProposalInfo",
            self._fn.getProposalInfo(proposal_id).call(block_identifier=block),
        )
        fields = self._named_outputs("getProposalInfo", raw)
        return Proposal(
            id=int(fields.get("id") or proposal_id),
            proposer=fields["proposer"],
            beneficiary=fields["student"],
            approvals=int(fields["approvals"]),
            rejections=int(fields["rejections"]),
            minted=bool(fields["minted"]),
            metadata_uri=fields["metadataURI"],
            as_of_block=block,
        )

    async def has_voted(self, proposal_id: int, voter: str) -> bool:
        return bool(await self._guarded(
            "hasVoted",
            self._fn.hasVoted(proposal_id, _checksum(voter, "voter")).call(),
        ))

    async def is_eligible_voter(self, address: str) -> bool:
        return bool(await self._guarded(
            "isUniversity",
            self._fn.isUniversity(_checksum(address, "address")).call(),
        ))

    async def owner_of(self, token_id: int) -> str:
        return str(await self._guarded("ownerOf", self._fn.ownerOf(token_id).call()))

    async def token_uri(self, token_id: int) -> str:
        return str(await self._guarded("tokenURI", self._fn.tokenURI(token_id).call()))

    async def tokens_of(self, owner: str) -> list[CredentialToken]:
        owner = _checksum(owner, "owner")
        logs = await self._guarded(
            "Transfer.get_logs",
            self._events.Transfer().get_logs(argument_filters={"to": owner}, from_block=0),
        )

        tokens: list[CredentialToken] = []
        for token_id in dict.fromkeys(int(log["args"]["tokenId"]) for log in logs):
            try:
                current = await self.owner_of(token_id)
            except LedgerRejected:
                continue  # burned
            if not same_address(current, owner):
                continue
            tokens.append(CredentialToken(
                token_id=token_id,
                owner=current,
                metadata_uri=await self.token_uri(token_id),
            ))
        return tokens

    # ── Mutations ─────────────────────────────────────────────

    async def add_eligible_voter(self, address: str) -> None:
        await self._transact(
            "addUniversity",
            self._fn.addUniversity(_checksum(address, "address")),
        )

    async def propose(self, beneficiary: str, metadata_uri: str) -> int:
        simulated, _ = await self._transact(
            "proposeCredential",
            self._fn.proposeCredential(_checksum(beneficiary, "beneficiary"), metadata_uri),
        )
        if isinstance(simulated, int) and simulated > 0:
            return simulated
        # Contract returns nothing: ids are dense, so the newest is the count.
        return await self.proposal_count()

    async def vote(self, proposal_id: int, approve: bool) -> None:
        await self._transact("voteOnCredential", self._fn.voteOnCredential(proposal_id, approve))

    async def mint(self, proposal_id: int) -> int:
        _, receipt = await self._transact("mintCredential", self._fn.mintCredential(proposal_id))
        transfers = self._events.Transfer().process_receipt(receipt, errors=DISCARD)
        if not transfers:
            raise LedgerUnavailable("mintCredential receipt carried no Transfer event")
        return int(transfers[0]["args"]["tokenId"])

    # ── Events ────────────────────────────────────────────────

    async def _logs_between(self, start: int, end: int) -> list[LedgerEvent]:
        voted = await self._guarded(
            "CredentialVoted.get_logs",
            self._events.CredentialVoted().get_logs(from_block=start, to_block=end),
        )
        transfers = await self._guarded(
            "Transfer.get_logs",
            self._events.Transfer().get_logs(from_block=start, to_block=end),
        )

        events: list[LedgerEvent] = [
            VoteCast(
                proposal_id=int(log["args"]["proposalId"]),
                voter=log["args"]["voter"],
                approved=bool(log["args"]["approved"]),
                block_number=int(log["blockNumber"]),
                log_index=int(log["logIndex"]),
            )
            for log in voted
        ]
        events.extend(
            TokenTransferred(
                token_id=int(log["args"]["tokenId"]),
                sender=log["args"]["from"],
                recipient=log["args"]["to"],
                block_number=int(log["blockNumber"]),
                log_index=int(log["logIndex"]),
            )
            for log in transfers
        )
        events.sort(key=lambda e: (e.block_number or 0, e.log_index))
        return events

    async def events(self, from_block: int | None = None) -> AsyncIterator[LedgerEvent]:
        next_block = from_block if from_block is not None else await self.block_number() + 1
        failures = 0

        while True:
            try:
                head = await self.block_number()
                while next_block <= head:
                    end = min(head, next_block + self._config.max_block_range - 1)
                    for event in await self._logs_between(next_block, end):
                        yield event
                    next_block = end + 1
                failures = 0
            except LedgerUnavailable as exc:
                failures += 1
                self._logger.warning(
                    "event_poll_failed",
                    failures=failures,
                    next_block=next_block,
                    error=str(exc),
                )
                if failures >= self._config.max_poll_failures:
                    raise
            await asyncio.sleep(self._config.poll_interval_s)
