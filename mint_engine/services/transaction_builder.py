# mint_engine/services/transaction_builder.py
from __future__ import annotations

import base64
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List

from solders.hash import Hash
from solders.message import Message
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction

from mint_engine.core.errors import ValidationError
from mint_engine.services.price_oracle import LAMPORTS_PER_SOL


@dataclass(frozen=True)
class UnsignedTransaction:
    transaction_b64: str
    recent_blockhash: str
    fee_lamports: int
    creator_payment_lamports: int
    instructions: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def total_lamports(self) -> int:
        return self.fee_lamports + self.creator_payment_lamports


def sol_to_lamports(amount_sol: Decimal) -> int:
    return int((Decimal(amount_sol) * LAMPORTS_PER_SOL).to_integral_value(rounding=ROUND_HALF_UP))


def _pubkey(value: str, label: str) -> Pubkey:
    try:
        return Pubkey.from_string(value)
    except Exception:
        raise ValidationError(f"{label} is not a valid Solana address.")


class TransactionBuilder:
    """
    Builds the payment transaction the buyer signs:
      (a) buyer -> platform wallet, fixed platform fee
      (b) buyer -> creator wallet, unit price x quantity (omitted when zero)

    No on-chain mint instruction: Item attribution is recorded off-chain at
    confirmation; on-chain issuance is a separate pluggable step.
    """

    def __init__(self, platform_wallet: str):
        self.platform_pubkey = _pubkey(platform_wallet, "Platform wallet")

    def build(
        self,
        *,
        buyer_wallet: str,
        creator_wallet: str,
        quantity: int,
        unit_price_sol: Decimal,
        fee_lamports: int,
        recent_blockhash: str,
    ) -> UnsignedTransaction:
        if quantity <= 0:
            raise ValidationError("quantity must be positive.")
        if fee_lamports < 0:
            raise ValidationError("Platform fee cannot be negative.")

        buyer = _pubkey(buyer_wallet, "Buyer wallet")
        creator = _pubkey(creator_wallet, "Creator wallet")
        try:
            blockhash = Hash.from_string(recent_blockhash)
        except Exception:
            raise ValidationError("recent_blockhash is not a valid blockhash.")

        creator_lamports = sol_to_lamports(Decimal(unit_price_sol) * quantity)

        instructions = [
            transfer(TransferParams(from_pubkey=buyer, to_pubkey=self.platform_pubkey, lamports=fee_lamports))
        ]
        summary = [{"type": "platform_fee", "to": str(self.platform_pubkey), "lamports": fee_lamports}]

        if creator_lamports > 0:
            instructions.append(
                transfer(TransferParams(from_pubkey=buyer, to_pubkey=creator, lamports=creator_lamports))
            )
            summary.append({"type": "creator_payment", "to": str(creator), "lamports": creator_lamports})

        message = Message.new_with_blockhash(instructions, buyer, blockhash)
        tx = Transaction.new_unsigned(message)

        return UnsignedTransaction(
            transaction_b64=base64.b64encode(bytes(tx)).decode("ascii"),
            recent_blockhash=recent_blockhash,
            fee_lamports=fee_lamports,
            creator_payment_lamports=creator_lamports,
            instructions=summary,
        )
