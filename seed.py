"""
Seed a starter coffee catalog and, optionally, a first admin account.

    python seed.py

The admin is created only when ADMIN_EMAIL and ADMIN_PASSWORD are set and no user has that email.
"""
from typing import Optional

from pymongo.database import Database

import database
from config import ADMIN_EMAIL, ADMIN_PASSWORD
from database import create_document, ensure_indexes
from logger import get_logger
from schemas import Product as ProductSchema, Role, User as UserSchema
from security import get_password_hash

logger = get_logger("seed")

COFFEE_PRODUCTS = [
    {
        "name": "Colombian Supremo",
        "description": "A smooth medium roast with chocolatey notes and a clean finish.",
        "price": 14.99,
        "image": "https://example.com/images/colombian-supremo.jpg",
        "categories": ["Medium Roast", "Colombian", "Single Origin"],
    },
    {
        "name": "Ethiopian Yirgacheffe",
        "description": "Floral aroma with bright citrus flavors and hints of blueberry.",
        "price": 16.50,
        "image": "https://example.com/images/ethiopian-yirgacheffe.jpg",
        "categories": ["Light Roast", "Ethiopian", "Single Origin"],
    },
    {
        "name": "Kenyan AA",
        "description": "Vibrant acidity with notes of black currant and a rich aroma.",
        "price": 17.00,
        "image": "https://example.com/images/kenyan-aa.jpg",
        "categories": ["Medium Roast", "Kenyan", "Single Origin"],
    },
    {
        "name": "Sumatra Mandheling",
        "description": "Earthy and bold with herbal notes, perfect for dark roast lovers.",
        "price": 15.75,
        "image": "https://example.com/images/sumatra-mandheling.jpg",
        "categories": ["Dark Roast", "Sumatra", "Single Origin"],
    },
    {
        "name": "Guatemala Antigua",
        "description": "Delicate sweetness with hints of caramel and a smoky finish.",
        "price": 13.99,
        "image": "https://example.com/images/guatemala-antigua.jpg",
        "categories": ["Medium Roast", "Guatemalan", "Single Origin"],
    },
    {
        "name": "House Espresso Blend",
        "description": "Dense crema, dark chocolate and toasted nut notes.",
        "price": 12.49,
        "image": "https://example.com/images/house-espresso.jpg",
        "categories": ["Dark Roast", "Blend", "Espresso"],
    },
]


def seed_products(db: Database) -> int:
    """Insert the starter catalog when the product collection is empty. Returns the number inserted."""
    if db["product"].count_documents({}) > 0:
        return 0
    for data in COFFEE_PRODUCTS:
        create_document(db, "product", ProductSchema(**data))
    return len(COFFEE_PRODUCTS)


def seed_admin(db: Database, email: Optional[str], password: Optional[str]) -> bool:
    if not email or not password:
        return False
    email = email.lower()
    if db["user"].find_one({"email": email}):
        return False
    admin = UserSchema(username="admin", email=email, password_hash=get_password_hash(password), role=Role.ADMIN)
    create_document(db, "user", admin)
    return True


def main():
    db = database.get_db()
    ensure_indexes(db)
    inserted = seed_products(db)
    logger.info("Seeded %d products", inserted)
    if seed_admin(db, ADMIN_EMAIL, ADMIN_PASSWORD):
        logger.info("Created admin %s", ADMIN_EMAIL)


if __name__ == "__main__":
    main()
