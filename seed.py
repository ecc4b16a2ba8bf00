"""
Demo catalog for local development.

Run directly (python seed.py) or through POST /admin/seed. Nothing is written
when products already exist.
"""
import logging

from pymongo.database import Database

from auth import hash_password
from database import create_document

logger = logging.getLogger(__name__)

CATEGORIES = [
    {"name": "Audio", "slug": "audio", "description": "Headphones, earbuds and speakers",
     "image_url": "https://images.unsplash.com/photo-1505740420928-5e560c06d30e?w=800"},
    {"name": "Wearables", "slug": "wearables", "description": "Watches and fitness trackers",
     "image_url": "https://images.unsplash.com/photo-1523275335684-37898b6baf30?w=800"},
    {"name": "Accessories", "slug": "accessories", "description": "Cases, chargers and cables",
     "image_url": "https://images.unsplash.com/photo-1583394838336-acd977736f90?w=800"},
]

PRODUCTS = [
    {
        "category": "audio",
        "name": "Wireless Noise-Cancelling Headphones",
        "description": "Over-ear headphones with adaptive noise cancelling.",
        "long_description": "Thirty hours of battery, multipoint pairing and a fold-flat design.",
        "price": 199.99,
        "image_url": "https://images.unsplash.com/photo-1505740420928-5e560c06d30e?w=1200",
        "in_stock": True,
        "is_new": False,
        "is_featured": True,
        "specifications": [
            {"label": "Battery", "value": "30 hours"},
            {"label": "Bluetooth", "value": "5.3"},
            {"label": "Weight", "value": "250 g"},
        ],
        "variants": [("Black", True), ("Silver", True), ("Midnight Blue", False)],
    },
    {
        "category": "audio",
        "name": "True Wireless Earbuds",
        "description": "Compact earbuds with a pocketable charging case.",
        "price": 89.99,
        "image_url": "https://images.unsplash.com/photo-1590658268037-6bf12165a8df?w=1200",
        "in_stock": True,
        "is_new": True,
        "is_featured": False,
        "specifications": [{"label": "Battery", "value": "8 hours + 24 in case"}],
        "variants": [("White", True), ("Black", True)],
    },
    {
        "category": "audio",
        "name": "Portable Bluetooth Speaker",
        "description": "Waterproof speaker with deep bass.",
        "price": 59.0,
        "image_url": "https://images.unsplash.com/photo-1608043152269-423dbba4e7e1?w=1200",
        "in_stock": False,
        "is_new": False,
        "is_featured": False,
        "specifications": [{"label": "Rating", "value": "IP67"}],
        "variants": [],
    },
    {
        "category": "wearables",
        "name": "Fitness Smartwatch",
        "description": "Heart rate, GPS and sleep tracking.",
        "price": 249.0,
        "image_url": "https://images.unsplash.com/photo-1523275335684-37898b6baf30?w=1200",
        "in_stock": True,
        "is_new": True,
        "is_featured": True,
        "specifications": [{"label": "Display", "value": "1.4 in AMOLED"}],
        "variants": [("41 mm", True), ("45 mm", True)],
    },
    {
        "category": "accessories",
        "name": "USB-C Fast Charger",
        "description": "65 W GaN charger with two ports.",
        "price": 39.99,
        "image_url": "https://images.unsplash.com/photo-1583394838336-acd977736f90?w=1200",
        "in_stock": True,
        "is_new": False,
        "is_featured": False,
        "specifications": [{"label": "Output", "value": "65 W"}],
        "variants": [],
    },
]

DEMO_USER = {"name": "Demo Shopper", "email": "demo@example.com", "password": "password123"}

REVIEWS = [
    (5, "Amazing product, sound quality is top notch!"),
    (4, "Very good, but could be more comfortable after long use."),
    (3, "Average product. Not bad, not great."),
    (5, "Crystal clear audio and super lightweight!"),
]


def seed_catalog(db: Database) -> dict:
    if db["product"].count_documents({}) > 0:
        return {"seeded": False, "message": "Products already exist"}

    category_ids = {}
    for category in CATEGORIES:
        existing = db["category"].find_one({"slug": category["slug"]})
        category_ids[category["slug"]] = str(existing["_id"]) if existing else create_document(db, "category", category)

    product_ids = []
    for spec in PRODUCTS:
        data = {k: v for k, v in spec.items() if k not in ("category", "variants")}
        data["category_id"] = category_ids[spec["category"]]
        product_id = create_document(db, "product", data)
        product_ids.append(product_id)
        for name, in_stock in spec["variants"]:
            create_document(db, "product_variant", {"product_id": product_id, "name": name, "in_stock": in_stock})

    user = db["user"].find_one({"email": DEMO_USER["email"]})
    if user:
        user_id = str(user["_id"])
    else:
        user_id = create_document(db, "user", {
            "name": DEMO_USER["name"],
            "email": DEMO_USER["email"],
            "hashed_password": hash_password(DEMO_USER["password"]),
            "is_admin": False,
        })
    for rating, text in REVIEWS:
        create_document(db, "review", {"product_id": product_ids[0], "user_id": user_id, "rating": rating, "text": text})

    logger.info("Seeded %d categories and %d products", len(category_ids), len(product_ids))
    return {"seeded": True, "categories": len(category_ids), "products": len(product_ids), "reviews": len(REVIEWS)}


if __name__ == "__main__":
    import database

    logging.basicConfig(level=logging.INFO)
    conn = database.connect()
    if conn is None:
        raise SystemExit("Set DATABASE_URL to seed the catalog")
    print(seed_catalog(conn))
