"""
Unit tests for the administrative CLI.

Commands run through ``run_command`` against an in-memory ledger and a
MockTransport metadata store; output is checked with capsys.
"""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from web3 import AsyncWeb3

from accredit.cli import (
    EXIT_INVALID,
    EXIT_METADATA,
    EXIT_OK,
    EXIT_REJECTED,
    EXIT_UNAVAILABLE,
    CommandContext,
    build_parser,
    main,
    run_command,
)
from accredit.clients.memory_ledger import InMemoryLedger
from accredit.clients.metadata_store import MetadataStoreClient
from accredit.clients.web3_ledger import Web3LedgerClient
from accredit.config import AccreditConfig, LedgerConfig, MetadataConfig
from accredit.errors import LedgerUnavailable

ADMIN = "0x" + "a0" * 20
UNI_A = "0x" + "a1" * 20
UNI_B = "0x" + "a2" * 20
UNI_C = "0x" + "a3" * 20
STUDENT = "0x" + "55" * 20

CREDENTIAL_ARGS = [
    "--name", "Ada", "--degree", "BSc", "--year", "2024",
    "--cgpa", "3.9", "--university", "Uni X", "--student", STUDENT,
]


# ─── Fixtures ────────────────────────────────────────────────────


class FakeIpfs:
    def __init__(self) -> None:
        self.pinned: dict[str, dict] = {}
        self.down = False
        self.requests = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests += 1
        if self.down:
            return httpx.Response(503)
        if request.method == "POST":
            cid = f"QmCli{len(self.pinned) + 1}"
            self.pinned[cid] = json.loads(request.content)
            return httpx.Response(200, json={"IpfsHash": cid})
        cid = request.url.path.rsplit("/", 1)[-1]
        if cid in self.pinned:
            return httpx.Response(200, json=self.pinned[cid])
        return httpx.Response(404)


async def make_ledger() -> InMemoryLedger:
    ledger = InMemoryLedger(admin=ADMIN, threshold=2)
    for uni in (UNI_A, UNI_B, UNI_C):
        await ledger.session(ADMIN).add_eligible_voter(uni)
    return ledger


def make_context(ledger: InMemoryLedger, actor: str, ipfs: FakeIpfs | None = None) -> CommandContext:
    ipfs = ipfs or FakeIpfs()
    config = AccreditConfig(metadata=MetadataConfig(
        pin_url="https://pin.test/pin",
        gateways=["https://gw.test/ipfs/"],
    ))
    metadata = MetadataStoreClient(
        config.metadata,
        client=httpx.AsyncClient(transport=httpx.MockTransport(ipfs.handler)),
    )
    return CommandContext(config=config, ledger=ledger.session(actor), metadata=metadata, actor=actor)


def make_web3_client() -> Web3LedgerClient:
    client = Web3LedgerClient(LedgerConfig(), w3=MagicMock())
    client._contract = MagicMock()
    client.sender = ADMIN
    client._transact = AsyncMock(return_value=(None, {"status": 1}))
    return client


def make_web3_context(client: Web3LedgerClient) -> CommandContext:
    ctx = make_context(InMemoryLedger(admin=ADMIN), ADMIN)
    ctx.ledger = client
    return ctx


async def run(argv: list[str], ctx: CommandContext) -> int:
    return await run_command(build_parser().parse_args(argv), ctx)


# ─── Parsing ─────────────────────────────────────────────────────


class TestParser:
    def test_missing_required_argument_exits_2(self):
        with pytest.raises(SystemExit) as exc_info:
            build_parser().parse_args(["vote", "--id", "1"])
        assert exc_info.value.code == 2

    def test_approve_must_be_boolean(self):
        with pytest.raises(SystemExit) as exc_info:
            build_parser().parse_args(["vote", "--id", "1", "--approve", "maybe"])
        assert exc_info.value.code == 2

    def test_approve_parses(self):
        args = build_parser().parse_args(["vote", "--id", "3", "--approve", "False"])
        assert args.proposal_id == 3
        assert args.approve is False


# ─── Commands ────────────────────────────────────────────────────


class TestAddVoter:
    @pytest.mark.asyncio
    async def test_batch_continues_after_rejection(self, capsys):
        ledger = InMemoryLedger(admin=ADMIN)
        await ledger.session(ADMIN).add_eligible_voter(UNI_A)
        ctx = make_context(ledger, ADMIN)

        code = await run(["add-voter", "--addresses", f"{UNI_A}, {UNI_B},{UNI_C}"], ctx)

        assert code == EXIT_REJECTED
        out, err = capsys.readouterr()
        assert f"Could not add {UNI_A}: Already a university" in err
        assert UNI_B in out and UNI_C in out
        assert await ledger.session(ADMIN).is_eligible_voter(UNI_C)

    @pytest.mark.asyncio
    async def test_invalid_address_never_reaches_ledger(self, capsys):
        client = make_web3_client()

        code = await run(
            ["add-voter", "--addresses", f"0xnot-an-address,{UNI_B}"],
            make_web3_context(client),
        )

        assert code == EXIT_INVALID
        out, err = capsys.readouterr()
        assert "[x] Could not add 0xnot-an-address: invalid address" in err
        assert f"Eligible voter added: {UNI_B}" in out
        client._transact.assert_awaited_once()
        client._contract.functions.addUniversity.assert_called_once_with(
            AsyncWeb3.to_checksum_address(UNI_B)
        )

    @pytest.mark.asyncio
    async def test_unavailable_entry_does_not_stop_batch(self, capsys):
        client = make_web3_client()
        client._transact = AsyncMock(side_effect=[LedgerUnavailable("rpc timeout"), (None, {"status": 1})])

        code = await run(["add-voter", "--addresses", f"{UNI_B},{UNI_C}"], make_web3_context(client))

        assert code == EXIT_UNAVAILABLE
        out, err = capsys.readouterr()
        assert f"[!] Could not add {UNI_B}: ledger unavailable" in err
        assert f"Eligible voter added: {UNI_C}" in out
        assert client._transact.await_count == 2


class TestPublishAndPropose:
    @pytest.mark.asyncio
    async def test_publish_prints_pointer(self, capsys):
        ledger = await make_ledger()
        ipfs = FakeIpfs()

        code = await run(["publish", *CREDENTIAL_ARGS], make_context(ledger, UNI_A, ipfs))

        assert code == EXIT_OK
        out, _ = capsys.readouterr()
        assert "ipfs://QmCli1" in out
        assert "https://gw.test/ipfs/QmCli1" in out

    @pytest.mark.asyncio
    async def test_publish_missing_fields_makes_no_request(self, capsys):
        ledger = await make_ledger()
        ipfs = FakeIpfs()

        code = await run(["publish", "--name", "Ada"], make_context(ledger, UNI_A, ipfs))

        assert code == EXIT_INVALID
        assert ipfs.requests == 0
        _, err = capsys.readouterr()
        assert err.startswith("[x]")
        assert "degree" in err

    @pytest.mark.asyncio
    async def test_publish_store_down(self):
        ledger = await make_ledger()
        ipfs = FakeIpfs()
        ipfs.down = True
        code = await run(["publish", *CREDENTIAL_ARGS], make_context(ledger, UNI_A, ipfs))
        assert code == EXIT_METADATA

    @pytest.mark.asyncio
    async def test_propose_requires_pointer(self):
        ledger = await make_ledger()
        height = ledger.height
        code = await run(["propose", *CREDENTIAL_ARGS], make_context(ledger, UNI_A))
        assert code == EXIT_INVALID
        assert ledger.height == height

    @pytest.mark.asyncio
    async def test_propose_records_proposal(self, capsys):
        ledger = await make_ledger()
        code = await run(
            ["propose", *CREDENTIAL_ARGS, "--ipfs", "ipfs://QmX"],
            make_context(ledger, UNI_A),
        )
        assert code == EXIT_OK
        assert "Proposal 1 recorded" in capsys.readouterr().out
        assert await ledger.session(UNI_A).proposal_count() == 1


class TestVoteAndMint:
    @pytest.mark.asyncio
    async def test_double_vote_refused_locally(self, capsys):
        ledger = await make_ledger()
        await ledger.session(UNI_A).propose(STUDENT, "ipfs://QmX")

        assert await run(["vote", "--id", "1", "--approve", "true"], make_context(ledger, UNI_B)) == EXIT_OK
        height = ledger.height
        code = await run(["vote", "--id", "1", "--approve", "false"], make_context(ledger, UNI_B))

        assert code == EXIT_INVALID
        assert ledger.height == height
        assert "already voted" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_mint_below_quorum_is_rejected(self, capsys):
        ledger = await make_ledger()
        await ledger.session(UNI_A).propose(STUDENT, "ipfs://QmX")
        code = await run(["mint", "--id", "1"], make_context(ledger, UNI_A))
        assert code == EXIT_REJECTED
        assert "Not enough approvals" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_mint_after_quorum(self, capsys):
        ledger = await make_ledger()
        await ledger.session(UNI_A).propose(STUDENT, "ipfs://QmX")
        await ledger.session(UNI_B).vote(1, True)
        await ledger.session(UNI_C).vote(1, True)

        code = await run(["mint", "--id", "1"], make_context(ledger, UNI_A))

        assert code == EXIT_OK
        assert "minted as token 1" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_unavailable_ledger(self, capsys):
        ledger = await make_ledger()
        await ledger.session(UNI_A).propose(STUDENT, "ipfs://QmX")
        ledger.offline = True
        code = await run(["mint", "--id", "1"], make_context(ledger, UNI_A))
        assert code == EXIT_UNAVAILABLE
        assert capsys.readouterr().err.startswith("[!]")


class TestListing:
    @pytest.mark.asyncio
    async def test_own_and_others(self, capsys):
        ledger = await make_ledger()
        await ledger.session(UNI_A).propose(STUDENT, "ipfs://QmMine")
        await ledger.session(UNI_B).propose(STUDENT, "ipfs://QmTheirs")

        assert await run(["list"], make_context(ledger, UNI_A)) == EXIT_OK
        out = capsys.readouterr().out
        assert "ipfs://QmMine" in out
        assert "ipfs://QmTheirs" not in out
        assert "below_threshold" in out

        assert await run(["list", "--others"], make_context(ledger, UNI_A)) == EXIT_OK
        out = capsys.readouterr().out
        assert "ipfs://QmTheirs" in out
        assert "ipfs://QmMine" not in out

    @pytest.mark.asyncio
    async def test_no_sender_configured(self):
        ledger = await make_ledger()
        ctx = make_context(ledger, UNI_A)
        ctx.actor = None
        assert await run(["list"], ctx) == EXIT_INVALID


class TestVerification:
    @pytest.mark.asyncio
    async def test_verify_and_credentials(self, capsys):
        ledger = await make_ledger()
        ipfs = FakeIpfs()
        ctx = make_context(ledger, UNI_A, ipfs)
        assert await run(["publish", *CREDENTIAL_ARGS], ctx) == EXIT_OK
        await ledger.session(UNI_A).propose(STUDENT, "ipfs://QmCli1")
        await ledger.session(UNI_B).vote(1, True)
        await ledger.session(UNI_C).vote(1, True)
        await ledger.session(UNI_A).mint(1)
        capsys.readouterr()

        assert await run(["verify", "--id", "1"], ctx) == EXIT_OK
        out = capsys.readouterr().out
        assert "BSc - Ada" in out
        assert "Uni X" in out

        assert await run(["credentials", "--student", STUDENT], ctx) == EXIT_OK
        assert "holds 1 credential(s)" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_verify_unknown_token(self):
        ledger = await make_ledger()
        assert await run(["verify", "--id", "5"], make_context(ledger, UNI_A)) == EXIT_REJECTED


# ─── Entry point ─────────────────────────────────────────────────


class TestMain:
    def test_bad_threshold_is_a_configuration_error(self, monkeypatch, capsys):
        monkeypatch.setenv("ACCREDIT_APPROVAL_THRESHOLD", "two")
        assert main(["list"]) == EXIT_INVALID
        assert capsys.readouterr().err.startswith("[x] configuration")

    def test_invalid_yaml_is_a_configuration_error(self, monkeypatch, tmp_path, capsys):
        monkeypatch.delenv("ACCREDIT_APPROVAL_THRESHOLD", raising=False)
        path = tmp_path / "accredit.yaml"
        path.write_text("ledger: [unclosed\n")
        assert main(["--config", str(path), "list"]) == EXIT_INVALID
        assert capsys.readouterr().err.startswith("[x] configuration")
