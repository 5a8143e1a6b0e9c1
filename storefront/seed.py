"""
Demo data: an admin, a customer and the starter catalogue.
"""
import logging

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .auth import Role
from .money import to_minor
from .tables import Product, User

logger = logging.getLogger(__name__)

USERS = [
    {"email": "admin@onemorepiece.com", "name": "Admin User", "role": Role.ADMIN.value},
    {"email": "demo@example.com", "name": "Demo Customer", "role": Role.CUSTOMER.value},
]

PRODUCTS = [
    {
        "slug": "midnight-crew-shirt",
        "name": "Midnight Crew Shirt",
        "description": "A sharp, tailored button-down in midnight black.",
        "price": 2499,
        "category": "shirts",
        "sizes": ["S", "M", "L", "XL"],
        "images": ["placeholder-1.jpg"],
    },
    {
        "slug": "essential-cargo-pants",
        "name": "Essential Cargo Pants",
        "description": "Modern cargo pants with a clean, tapered silhouette.",
        "price": 3499,
        "category": "pants",
        "sizes": ["28", "30", "32", "34", "36"],
        "images": ["placeholder-2.jpg"],
    },
    {
        "slug": "signature-tee-black",
        "name": "Signature Tee - Black",
        "description": "Heavyweight pre-washed cotton tee with a relaxed fit.",
        "price": 1299,
        "category": "t-shirts",
        "sizes": ["S", "M", "L", "XL", "XXL"],
        "images": ["placeholder-3.jpg"],
    },
    {
        "slug": "minimalist-leather-wallet",
        "name": "Minimalist Leather Wallet",
        "description": "Slim bifold wallet in premium leather.",
        "price": 1999,
        "category": "accessories",
        "sizes": ["One Size"],
        "images": ["placeholder-4.jpg"],
    },
    {
        "slug": "oxford-dress-shirt-white",
        "name": "Oxford Dress Shirt - White",
        "description": "Classic white oxford with a button-down collar.",
        "price": 2799,
        "category": "shirts",
        "sizes": ["S", "M", "L", "XL"],
        "images": ["placeholder-5.jpg"],
    },
    {
        "slug": "slim-fit-chinos-khaki",
        "name": "Slim Fit Chinos - Khaki",
        "description": "Tailored stretch chinos with a mid-rise waist.",
        "price": 2999,
        "category": "pants",
        "sizes": ["28", "30", "32", "34", "36"],
        "images": ["placeholder-6.jpg"],
    },
    {
        "slug": "signature-tee-white",
        "name": "Signature Tee - White",
        "description": "The heavyweight signature tee in clean white.",
        "price": 1299,
        "category": "t-shirts",
        "sizes": ["S", "M", "L", "XL", "XXL"],
        "images": ["placeholder-7.jpg"],
    },
    {
        "slug": "canvas-tote-bag",
        "name": "Canvas Tote Bag",
        "description": "Durable canvas tote with reinforced handles.",
        "price": 1499,
        "category": "accessories",
        "sizes": ["One Size"],
        "images": ["placeholder-8.jpg"],
    },
]


def ensure_seeded(db: Session) -> dict:
    """Insert demo users and products into empty tables. Safe to re-run."""
    created = {"users": 0, "products": 0}

    if db.scalar(select(func.count()).select_from(User)) == 0:
        db.add_all(User(**user) for user in USERS)
        created["users"] = len(USERS)

    if db.scalar(select(func.count()).select_from(Product)) == 0:
        for product in PRODUCTS:
            data = dict(product)
            db.add(Product(price_minor=to_minor(data.pop("price")), in_stock=True, **data))
        created["products"] = len(PRODUCTS)

    db.commit()
    if created["users"] or created["products"]:
        logger.info("Seeded %d user(s) and %d product(s)", created["users"], created["products"])
    return created
