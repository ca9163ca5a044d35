from datetime import timedelta
from decimal import Decimal

from solders.keypair import Keypair
from sqlalchemy.orm import Session

from mint_engine.core.clock import utcnow
from mint_engine.db.session import SessionLocal
from mint_engine.models.collection import Collection
from mint_engine.models.item import Item
from mint_engine.models.mint_phase import MintPhase
from mint_engine.services.collection_service import CollectionService


def seed(total_supply: int = 100, og_wallets: int = 5):
    db: Session = SessionLocal()
    now = utcnow()

    coll = Collection(
        name="Seed Drop",
        collection_mint_address=str(Keypair().pubkey()),
        creator_wallet=str(Keypair().pubkey()),
        royalty_percentage=Decimal("5"),
        total_supply=total_supply,
        status="draft",
    )
    db.add(coll)
    db.flush()

    for i in range(total_supply):
        db.add(
            Item(
                collection_id=coll.id,
                name=f"Seed Drop #{i + 1}",
                image_uri=f"https://example.invalid/seed-drop/{i}.png",
                item_index=i,
            )
        )

    og = MintPhase(
        collection_id=coll.id,
        name="OG",
        price_sol=Decimal("0.5"),
        start_time=now,
        end_time=now + timedelta(hours=2),
        mint_limit=2,
    )
    public = MintPhase(
        collection_id=coll.id,
        name="Public",
        price_sol=Decimal("1"),
        start_time=now + timedelta(hours=1),
        end_time=None,
    )
    db.add_all([og, public])
    db.flush()

    wallets = [str(Keypair().pubkey()) for _ in range(og_wallets)]
    root = CollectionService().set_allow_list(db, og, wallets)
    db.commit()

    CollectionService().activate_due(db, now=now)

    print(f"collection={coll.id} address={coll.collection_mint_address}")
    print(f"og_phase={og.id} merkle_root={root}")
    for w in wallets:
        print(f"og_wallet={w}")

    db.close()


if __name__ == "__main__":
    seed()
