"""
Accredit — Administrative CLI

One-shot commands against a deployed CredentialNFT contract.

Usage:
    accredit add-voter --addresses 0xA...,0xB...
    accredit publish --name "Ada" --degree "BSc" --year 2024 --cgpa 3.9 \\
                     --university "Uni X" --student 0x...
    accredit propose <same fields> --ipfs ipfs://<cid>
    accredit vote --id 3 --approve true
    accredit mint --id 3
    accredit list [--others]
    accredit verify --id 1
    accredit credentials --student 0x...

Configuration comes from an optional YAML file (--config) and ACCREDIT_*
environment variables; a .env file in the working directory is loaded
first. The sending account is ACCREDIT_PRIVATE_KEY (local signing) or
ACCREDIT_ACCOUNT (an unlocked node account).

Exit status:
    0  success
    1  the ledger rejected the action
    2  invalid input, or refused locally (already voted)
    3  ledger unavailable
    4  metadata store failure

add-voter reports every address and exits with the highest status among them.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import structlog
import yaml
from dotenv import load_dotenv

from accredit.clients.ledger import LedgerClient
from accredit.clients.metadata_store import MetadataStoreClient
from accredit.clients.web3_ledger import Web3LedgerClient
from accredit.config import AccreditConfig, load_config
from accredit.errors import (
    AlreadyVoted,
    LedgerRejected,
    LedgerUnavailable,
    MetadataError,
    ValidationError,
)
from accredit.primitives.common import is_valid_address
from accredit.primitives.credential import TRAIT_FIELDS, CredentialDraft
from accredit.primitives.ledger import Proposal
from accredit.systems.issuance import IssuanceService
from accredit.systems.quorum import decide
from accredit.systems.sync.views import authored_by, awaiting_review
from accredit.systems.verification import CredentialVerifier, VerifiedCredential
from accredit.telemetry import setup_logging

logger = structlog.get_logger("accredit.cli")

EXIT_OK = 0
EXIT_REJECTED = 1
EXIT_INVALID = 2
EXIT_UNAVAILABLE = 3
EXIT_METADATA = 4

# Commands that never touch the ledger
_METADATA_ONLY = {"publish"}


@dataclass
class CommandContext:
    config: AccreditConfig
    ledger: LedgerClient | None
    metadata: MetadataStoreClient
    actor: str | None = None

    def require_ledger(self) -> LedgerClient:
        if self.ledger is None:
            raise LedgerUnavailable("no ledger client configured")
        return self.ledger

    def require_actor(self) -> str:
        if not self.actor:
            raise ValidationError(
                "no sending account configured (set ACCREDIT_PRIVATE_KEY or ACCREDIT_ACCOUNT)",
                fields=["account"],
            )
        return self.actor

    def issuance(self) -> IssuanceService:
        return IssuanceService(
            ledger=self.require_ledger(),
            metadata=self.metadata,
            actor=self.require_actor(),
            threshold=self.config.quorum.approval_threshold,
        )


# ── Argument parsing ──────────────────────────────────────────────────────────


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("true", "yes", "1"):
        return True
    if lowered in ("false", "no", "0"):
        return False
    raise argparse.ArgumentTypeError(f"expected true or false, got {value!r}")


def _add_credential_fields(parser: argparse.ArgumentParser) -> None:
    # Left optional here so a missing set is reported in one message
    parser.add_argument("--name", default="", help="Student name.")
    parser.add_argument("--degree", default="", help='Degree, e.g. "BSc Computer Science".')
    parser.add_argument("--year", default="", help="Year of award.")
    parser.add_argument("--cgpa", default="", help="Score / CGPA.")
    parser.add_argument("--university", default="", help="Issuing institution.")
    parser.add_argument("--student", default="", metavar="ADDRESS", help="Beneficiary address.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="accredit",
        description="Multi-institution approval of credential NFTs.",
    )
    parser.add_argument("--config", metavar="PATH", default=None, help="YAML config file.")
    parser.add_argument("--log-level", default=None, help="Override logging.level.")
    sub = parser.add_subparsers(dest="command", required=True)

    add_voter = sub.add_parser("add-voter", help="Admin: register eligible institutions.")
    add_voter.add_argument(
        "--addresses", required=True, metavar="A[,B,...]",
        help="Comma-separated institution addresses.",
    )

    publish = sub.add_parser("publish", help="Pin credential metadata to IPFS.")
    _add_credential_fields(publish)

    propose = sub.add_parser("propose", help="Propose a credential for approval.")
    _add_credential_fields(propose)
    propose.add_argument("--ipfs", default="", metavar="URI", help="Metadata pointer from publish.")

    vote = sub.add_parser("vote", help="Approve or reject a proposal.")
    vote.add_argument("--id", type=int, required=True, dest="proposal_id")
    vote.add_argument("--approve", type=_parse_bool, required=True, metavar="true|false")

    mint = sub.add_parser("mint", help="Mint an approved proposal.")
    mint.add_argument("--id", type=int, required=True, dest="proposal_id")

    listing = sub.add_parser("list", help="List proposals.")
    listing.add_argument(
        "--others", action="store_true",
        help="Other institutions' proposals still awaiting review.",
    )

    verify = sub.add_parser("verify", help="Verify a minted credential.")
    verify.add_argument("--id", type=int, required=True, dest="token_id")

    credentials = sub.add_parser("credentials", help="Credentials held by a student.")
    credentials.add_argument("--student", required=True, metavar="ADDRESS")

    return parser


def _draft_from_args(args: argparse.Namespace) -> CredentialDraft:
    return CredentialDraft(
        name=args.name,
        degree=args.degree,
        year=args.year,
        score=args.cgpa,
        beneficiary=args.student,
        institution=args.university,
    )


def _fail(line: str) -> None:
    print(line, file=sys.stderr)


# ── Commands ──────────────────────────────────────────────────────────────────


async def cmd_add_voter(args: argparse.Namespace, ctx: CommandContext) -> int:
    ledger = ctx.require_ledger()
    addresses = [a.strip() for a in args.addresses.split(",") if a.strip()]
    if not addresses:
        raise ValidationError("--addresses is empty", fields=["addresses"])

    # Each address is reported on its own; one failure never stops the batch.
    status = EXIT_OK
    for address in addresses:
        if not is_valid_address(address):
            _fail(f"[x] Could not add {address}: invalid address")
            status = max(status, EXIT_INVALID)
            continue
        try:
            await ledger.add_eligible_voter(address)
        except ValidationError as exc:
            _fail(f"[x] Could not add {address}: {exc}")
            status = max(status, EXIT_INVALID)
            continue
        except LedgerRejected as exc:
            _fail(f"[!] Could not add {address}: {exc.reason}")
            status = max(status, EXIT_REJECTED)
            continue
        except LedgerUnavailable as exc:
            _fail(f"[!] Could not add {address}: ledger unavailable: {exc}")
            status = max(status, EXIT_UNAVAILABLE)
            continue
        print(f"[+] Eligible voter added: {address}")
    return status


async def cmd_publish(args: argparse.Namespace, ctx: CommandContext) -> int:
    draft = _draft_from_args(args)
    draft.check()
    pointer = await ctx.metadata.publish(draft)
    print(f"[+] Metadata pinned: {pointer}")
    urls = ctx.metadata.candidate_urls(pointer)
    if urls:
        print(f"    Gateway URL    : {urls[0]}")
    return EXIT_OK


async def cmd_propose(args: argparse.Namespace, ctx: CommandContext) -> int:
    draft = _draft_from_args(args)
    draft.check()
    if not args.ipfs.strip():
        raise ValidationError("--ipfs is required (run publish first)", fields=["ipfs"])

    issuance = ctx.issuance()
    print(f"[*] Institution : {issuance.actor}")
    print(f"[*] Student     : {draft.beneficiary}")
    print(f"[*] Credential  : {draft.degree} - {draft.name} ({draft.year}, {draft.score})")
    print(f"[*] Metadata    : {args.ipfs}")

    proposal_id = await issuance.propose(draft.beneficiary, args.ipfs)
    print(f"[+] Proposal {proposal_id} recorded for {draft.beneficiary}")
    return EXIT_OK


async def cmd_vote(args: argparse.Namespace, ctx: CommandContext) -> int:
    issuance = ctx.issuance()
    await issuance.cast_vote(args.proposal_id, args.approve)
    verdict = "approve" if args.approve else "reject"
    print(f"[+] {issuance.actor} voted {verdict} on proposal {args.proposal_id}")
    return EXIT_OK


async def cmd_mint(args: argparse.Namespace, ctx: CommandContext) -> int:
    issuance = ctx.issuance()
    token_id = await issuance.mint(args.proposal_id)
    print(f"[+] Proposal {args.proposal_id} minted as token {token_id}")
    return EXIT_OK


async def cmd_list(args: argparse.Namespace, ctx: CommandContext) -> int:
    ledger = ctx.require_ledger()
    actor = ctx.require_actor()
    threshold = ctx.config.quorum.approval_threshold

    count = await ledger.proposal_count()
    semaphore = asyncio.Semaphore(ctx.config.sync.max_concurrent_fetches)

    async def fetch(proposal_id: int) -> Proposal:
        async with semaphore:
            return await ledger.get_proposal(proposal_id)

    proposals = list(await asyncio.gather(*(fetch(i) for i in range(1, count + 1))))
    print(f"[*] Institution: {actor}")
    print(f"[*] Total proposals on ledger: {count}")

    if args.others:
        rows = awaiting_review(proposals, actor)
        if not rows:
            print("No pending proposals from other institutions.")
            return EXIT_OK
    else:
        rows = authored_by(proposals, actor)
        if not rows:
            print("No proposals found for this institution.")
            return EXIT_OK

    print(f"{'ID':>4}  {'PROPOSER':<42}  {'STUDENT':<42}  {'+':>3} {'-':>3}  {'STATUS':<16}  URI")
    for p in rows:
        decision = decide(p, threshold)
        print(
            f"{p.id:>4}  {p.proposer:<42}  {p.beneficiary:<42}  "
            f"{p.approvals:>3} {p.rejections:>3}  {decision.reason.value:<16}  {p.metadata_uri}"
        )
    return EXIT_OK


def _print_credential(credential: VerifiedCredential) -> None:
    print(f"[*] Token {credential.token_id}")
    print(f"    Owner        : {credential.owner}")
    print(f"    Metadata URI : {credential.metadata_uri}")
    resolved = credential.metadata
    if resolved.document is None:
        _fail(f"[!] Could not fetch metadata for token {credential.token_id}: {resolved.error}")
        return
    document = resolved.document
    print(f"    Title        : {document.title or '-'}")
    for trait, field in TRAIT_FIELDS.items():
        print(f"    {trait:<13}: {getattr(document, field) or '-'}")
    print(f"    Issued By    : {document.issued_by or '-'}")
    print(f"    Timestamp    : {document.issued_at or '-'}")
    for extra in document.extra_attributes:
        print(f"    {extra.name:<13}: {extra.value}")


async def cmd_verify(args: argparse.Namespace, ctx: CommandContext) -> int:
    verifier = CredentialVerifier(ctx.require_ledger(), ctx.metadata)
    _print_credential(await verifier.verify(args.token_id))
    return EXIT_OK


async def cmd_credentials(args: argparse.Namespace, ctx: CommandContext) -> int:
    if not is_valid_address(args.student):
        raise ValidationError(f"invalid --student address: {args.student}", fields=["student"])
    verifier = CredentialVerifier(ctx.require_ledger(), ctx.metadata)
    held = await verifier.credentials_of(args.student)
    print(f"[*] Student {args.student} holds {len(held)} credential(s)")
    for credential in held:
        _print_credential(credential)
    return EXIT_OK


COMMANDS: dict[str, Callable[[argparse.Namespace, CommandContext], Awaitable[int]]] = {
    "add-voter": cmd_add_voter,
    "publish": cmd_publish,
    "propose": cmd_propose,
    "vote": cmd_vote,
    "mint": cmd_mint,
    "list": cmd_list,
    "verify": cmd_verify,
    "credentials": cmd_credentials,
}


# ── Dispatch ──────────────────────────────────────────────────────────────────


async def run_command(args: argparse.Namespace, ctx: CommandContext) -> int:
    """Run one parsed command and map the outcome to an exit status."""
    handler = COMMANDS[args.command]
    try:
        return await handler(args, ctx)
    except (ValidationError, AlreadyVoted) as exc:
        _fail(f"[x] {exc}")
        return EXIT_INVALID
    except LedgerRejected as exc:
        _fail(f"[!] Ledger rejected: {exc.reason}")
        return EXIT_REJECTED
    except LedgerUnavailable as exc:
        _fail(f"[!] Ledger unavailable: {exc}")
        return EXIT_UNAVAILABLE
    except MetadataError as exc:
        _fail(f"[!] Metadata store: {exc}")
        return EXIT_METADATA


async def _run(args: argparse.Namespace, config: AccreditConfig) -> int:
    metadata = MetadataStoreClient(config.metadata)
    ledger: Web3LedgerClient | None = None
    try:
        if args.command not in _METADATA_ONLY:
            ledger = Web3LedgerClient(config.ledger)
            try:
                await ledger.connect()
            except (FileNotFoundError, ValueError) as exc:
                _fail(f"[x] Ledger configuration: {exc}")
                return EXIT_INVALID
        ctx = CommandContext(
            config=config,
            ledger=ledger,
            metadata=metadata,
            actor=ledger.sender if ledger is not None else None,
        )
        return await run_command(args, ctx)
    finally:
        if ledger is not None:
            await ledger.close()
        await metadata.close()


def main(argv: list[str] | None = None) -> int:
    # load_dotenv must run before load_config reads the environment
    load_dotenv()
    args = build_parser().parse_args(argv)
    try:
        config = load_config(args.config)
    except (ValueError, yaml.YAMLError) as exc:
        _fail(f"[x] configuration: {exc}")
        return EXIT_INVALID
    if args.log_level:
        config.logging.level = args.log_level
    setup_logging(config.logging)
    return asyncio.run(_run(args, config))


if __name__ == "__main__":
    sys.exit(main())
