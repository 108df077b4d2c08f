"""Public key parsing and program-derived addresses for the governance program."""
from typing import Union

from solders.pubkey import Pubkey

from dao_radar.exceptions import InvalidInputError

GOVERNANCE_SEED = b"governance"
REALM_CONFIG_SEED = b"realm-config"

PubkeyLike = Union[str, Pubkey]


def parse_pubkey(value: PubkeyLike, field: str = "public key") -> Pubkey:
    """
    Parse a base58 public key.

    Raises:
        InvalidInputError: If the value is not a valid 32-byte base58 key
    """
    if isinstance(value, Pubkey):
        return value
    if not isinstance(value, str) or not value.strip():
        raise InvalidInputError(f"Invalid {field}: empty value")
    try:
        return Pubkey.from_string(value.strip())
    except ValueError as e:
        raise InvalidInputError(f"Invalid {field}: {value!r}") from e


def token_owner_record_address(
    program_id: PubkeyLike, realm: PubkeyLike, governing_token_mint: PubkeyLike, owner: PubkeyLike
) -> Pubkey:
    address, _ = Pubkey.find_program_address(
        [
            GOVERNANCE_SEED,
            bytes(parse_pubkey(realm, "realm")),
            bytes(parse_pubkey(governing_token_mint, "governing token mint")),
            bytes(parse_pubkey(owner, "wallet")),
        ],
        parse_pubkey(program_id, "program id"),
    )
    return address


def vote_record_address(program_id: PubkeyLike, proposal: PubkeyLike, token_owner_record: PubkeyLike) -> Pubkey:
    address, _ = Pubkey.find_program_address(
        [
            GOVERNANCE_SEED,
            bytes(parse_pubkey(proposal, "proposal")),
            bytes(parse_pubkey(token_owner_record, "token owner record")),
        ],
        parse_pubkey(program_id, "program id"),
    )
    return address


def realm_config_address(program_id: PubkeyLike, realm: PubkeyLike) -> Pubkey:
    address, _ = Pubkey.find_program_address(
        [REALM_CONFIG_SEED, bytes(parse_pubkey(realm, "realm"))],
        parse_pubkey(program_id, "program id"),
    )
    return address
