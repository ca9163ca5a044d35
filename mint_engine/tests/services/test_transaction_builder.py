import base64
from decimal import Decimal

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from mint_engine.core.errors import ValidationError
from mint_engine.services.transaction_builder import TransactionBuilder, sol_to_lamports

PLATFORM = "4mHpjYdrBDa5REkpCSnv9GsFNerXhDdTNG5pS8jhyxEe"


def decode(b64: str) -> Transaction:
    return Transaction.from_bytes(base64.b64decode(b64))


@pytest.fixture()
def builder():
    return TransactionBuilder(PLATFORM)


def test_fee_and_creator_transfers(builder):
    buyer = str(Keypair().pubkey())
    creator = str(Keypair().pubkey())
    blockhash = str(Hash.new_unique())

    tx = builder.build(
        buyer_wallet=buyer,
        creator_wallet=creator,
        quantity=3,
        unit_price_sol=Decimal("0.5"),
        fee_lamports=12_500_000,
        recent_blockhash=blockhash,
    )

    assert tx.fee_lamports == 12_500_000
    assert tx.creator_payment_lamports == 1_500_000_000
    assert tx.total_lamports == 1_512_500_000
    assert [i["type"] for i in tx.instructions] == ["platform_fee", "creator_payment"]

    decoded = decode(tx.transaction_b64)
    assert len(decoded.message.instructions) == 2
    # buyer pays network fees
    assert decoded.message.account_keys[0] == Pubkey.from_string(buyer)
    assert str(decoded.message.recent_blockhash) == blockhash
    assert Pubkey.from_string(PLATFORM) in decoded.message.account_keys


def test_free_phase_only_charges_platform_fee(builder):
    tx = builder.build(
        buyer_wallet=str(Keypair().pubkey()),
        creator_wallet=str(Keypair().pubkey()),
        quantity=2,
        unit_price_sol=Decimal("0"),
        fee_lamports=12_500_000,
        recent_blockhash=str(Hash.new_unique()),
    )

    assert tx.creator_payment_lamports == 0
    assert len(decode(tx.transaction_b64).message.instructions) == 1


def test_lamport_conversion_rounds_half_up():
    assert sol_to_lamports(Decimal("0.333333333") * 3) == 999_999_999
    assert sol_to_lamports(Decimal("0.0000000005")) == 1
    assert sol_to_lamports(Decimal("1")) == 1_000_000_000


@pytest.mark.parametrize(
    "overrides",
    [
        {"buyer_wallet": "nope"},
        {"recent_blockhash": "not-a-hash"},
        {"quantity": 0},
        {"fee_lamports": -1},
    ],
)
def test_invalid_inputs_rejected(builder, overrides):
    kwargs = dict(
        buyer_wallet=str(Keypair().pubkey()),
        creator_wallet=str(Keypair().pubkey()),
        quantity=1,
        unit_price_sol=Decimal("1"),
        fee_lamports=1,
        recent_blockhash=str(Hash.new_unique()),
    )
    kwargs.update(overrides)
    with pytest.raises(ValidationError):
        builder.build(**kwargs)
