from typing import Dict, List

from bson import ObjectId
from flask import current_app

from .categories import adjust_product_count, create_category
from .helpers import utcnow
from .loyalty import credit_points
from .security import hash_password

seed_users = [
    {
        "name": "Admin User",
        "email": "admin@storefront.local",
        "password": "admin123456",
        "phone_number": "+84900000000",
        "role": "admin",
        "points": 0,
        "addresses": [],
    },
    {
        "name": "John Doe",
        "email": "john.doe@example.com",
        "password": "password123",
        "phone_number": "+84901234567",
        "role": "user",
        "points": 500,
        "addresses": [
            {
                "full_name": "John Doe",
                "phone": "+84901234567",
                "street": "123 Nguyen Hue Street",
                "ward": "Ben Nghe Ward",
                "district": "District 1",
                "city": "Ho Chi Minh City",
            }
        ],
    },
    {
        "name": "Jane Smith",
        "email": "jane.smith@example.com",
        "password": "password123",
        "phone_number": "+84907654321",
        "role": "user",
        "points": 250,
        "addresses": [
            {
                "full_name": "Jane Smith",
                "phone": "+84907654321",
                "street": "789 Dong Khoi Street",
                "ward": "Ben Nghe Ward",
                "district": "District 1",
                "city": "Ho Chi Minh City",
            }
        ],
    },
]

seed_categories = [
    {
        "name": "Electronics",
        "description": "Electronic devices and gadgets",
        "sort_order": 1,
        "children": [
            {"name": "Smartphones", "description": "Mobile phones and accessories", "sort_order": 1},
            {"name": "Laptops", "description": "Laptops and notebooks", "sort_order": 2},
            {"name": "Headphones", "description": "Audio devices and headphones", "sort_order": 3},
        ],
    },
    {
        "name": "Fashion",
        "description": "Clothing, shoes and accessories",
        "sort_order": 2,
        "children": [
            {"name": "Men's Clothing", "description": "Shirts, trousers and jackets", "sort_order": 1},
            {"name": "Women's Clothing", "description": "Dresses, tops and skirts", "sort_order": 2},
        ],
    },
    {
        "name": "Home & Garden",
        "description": "Furniture, decor and garden supplies",
        "sort_order": 3,
        "children": [],
    },
]

seed_products = [
    {
        "name": "iPhone 15 Pro",
        "sku": "IPH15PRO128",
        "category": "Smartphones",
        "brand": "Apple",
        "price": 28990000,
        "original_price": 30990000,
        "stock": 50,
        "is_featured": True,
        "tags": ["smartphone", "apple", "ios"],
        "variants": [
            {"size": "128GB", "color": "Natural Titanium", "stock": 30},
            {"size": "256GB", "color": "Natural Titanium", "stock": 20, "price": 31990000},
        ],
        "description": "Titanium design, A17 Pro chip and a 48MP main camera.",
    },
    {
        "name": "Samsung Galaxy S24",
        "sku": "SGS24-256",
        "category": "Smartphones",
        "brand": "Samsung",
        "price": 22990000,
        "stock": 40,
        "tags": ["smartphone", "samsung", "android"],
        "description": "Galaxy AI features with a 6.2 inch Dynamic AMOLED display.",
    },
    {
        "name": "MacBook Air M3",
        "sku": "MBA-M3-13",
        "category": "Laptops",
        "brand": "Apple",
        "price": 27990000,
        "stock": 25,
        "is_featured": True,
        "tags": ["laptop", "apple", "macos"],
        "description": "13 inch Liquid Retina display and all-day battery life.",
    },
    {
        "name": "Sony WH-1000XM5",
        "sku": "SONY-XM5",
        "category": "Headphones",
        "brand": "Sony",
        "price": 8490000,
        "stock": 8,
        "tags": ["headphones", "noise-cancelling"],
        "description": "Industry leading noise cancelling wireless headphones.",
    },
    {
        "name": "Classic Oxford Shirt",
        "sku": "MEN-OXF-01",
        "category": "Men's Clothing",
        "brand": "Storefront Basics",
        "price": 450000,
        "stock": 120,
        "tags": ["shirt", "cotton"],
        "variants": [
            {"size": "M", "color": "White", "stock": 60},
            {"size": "L", "color": "Blue", "stock": 60},
        ],
        "description": "Breathable cotton oxford shirt with a button-down collar.",
    },
    {
        "name": "Linen Summer Dress",
        "sku": "WMN-LIN-01",
        "category": "Women's Clothing",
        "brand": "Storefront Basics",
        "price": 690000,
        "stock": 70,
        "tags": ["dress", "linen"],
        "description": "Lightweight linen dress for warm days.",
    },
]

CATALOG_COLLECTIONS = ("users", "categories", "products", "orders", "loyalty_transactions")


def _seed_users(db) -> int:
    created = 0
    for user in seed_users:
        if db.users.find_one({"email": user["email"]}, {"_id": 1}):
            continue

        now = utcnow()
        addresses: List[Dict[str, object]] = [
            {"_id": ObjectId(), **address, "is_default": index == 0}
            for index, address in enumerate(user["addresses"])
        ]
        insert_result = db.users.insert_one(
            {
                "name": user["name"],
                "email": user["email"],
                "password": hash_password(user["password"]),
                "role": user["role"],
                "phone_number": user["phone_number"],
                "avatar": "",
                "is_active": True,
                "is_email_verified": True,
                "email_verified_at": now,
                "addresses": addresses,
                "cart": [],
                "wishlist": [],
                "orders": [],
                "points": 0,
                "failed_login_attempts": 0,
                "lock_until": None,
                "last_login_at": None,
                "created_at": now,
                "updated_at": now,
            }
        )
        if user["points"]:
            credit_points(db, insert_result.inserted_id, user["points"], "Welcome bonus")
        created += 1
    return created


def _seed_categories(db, admin_id) -> Dict[str, ObjectId]:
    category_ids: Dict[str, ObjectId] = {}
    for root in seed_categories:
        children = root["children"]
        root_document, failure = create_category(
            db, {key: value for key, value in root.items() if key != "children"}, admin_id
        )
        if failure:
            current_app.logger.warning("Skipping category %s: %s", root["name"], failure["key"])
            continue
        category_ids[root["name"]] = root_document["_id"]

        for child in children:
            child_document, failure = create_category(
                db, {**child, "parent": str(root_document["_id"])}, admin_id
            )
            if failure:
                current_app.logger.warning("Skipping category %s: %s", child["name"], failure["key"])
                continue
            category_ids[child["name"]] = child_document["_id"]
    return category_ids


def _seed_products(db, admin_id, category_ids: Dict[str, ObjectId]) -> int:
    created = 0
    for product in seed_products:
        category_id = category_ids.get(product["category"])
        if not category_id or db.products.find_one({"sku": product["sku"]}, {"_id": 1}):
            continue

        now = utcnow()
        image = f"https://placehold.co/600x600?text={product['sku']}"
        variants = [
            {
                "size": variant.get("size", ""),
                "color": variant.get("color", ""),
                "stock": variant.get("stock", 0),
                "price": variant.get("price"),
                "sku": f"{product['sku']}-{index + 1}",
            }
            for index, variant in enumerate(product.get("variants") or [])
        ]
        db.products.insert_one(
            {
                "name": product["name"],
                "description": product["description"],
                "short_description": product["description"][:120],
                "price": float(product["price"]),
                "original_price": product.get("original_price"),
                "category": category_id,
                "subcategory": None,
                "brand": product["brand"],
                "sku": product["sku"],
                "images": [image],
                "thumbnail": image,
                "variants": variants,
                "tags": sorted(product.get("tags") or []),
                "specifications": {},
                "weight": None,
                "dimensions": None,
                "stock": product["stock"],
                "min_stock": 10,
                "status": "active",
                "is_active": True,
                "is_featured": product.get("is_featured", False),
                "is_digital": False,
                "ratings": {"average": 0, "count": 0},
                "reviews": [],
                "sales": 0,
                "views": 0,
                "created_by": admin_id,
                "updated_by": admin_id,
                "created_at": now,
                "updated_at": now,
            }
        )
        adjust_product_count(db, category_id, 1)
        created += 1
    return created


def seed_database(db, force: bool = False) -> Dict[str, int]:
    """Load sample accounts, a two-level category tree and products.

    Existing data is kept unless ``force`` is set; without it the catalog is
    only seeded while the products collection is empty.
    """
    if force:
        for name in CATALOG_COLLECTIONS:
            db[name].delete_many({})
        current_app.logger.warning("Existing store data removed before seeding")

    users_created = _seed_users(db)
    admin_document = db.users.find_one({"role": "admin"}, {"_id": 1})
    admin_id = admin_document["_id"] if admin_document else None

    categories_created = 0
    products_created = 0
    if db.products.count_documents({}) == 0:
        category_ids = {
            document["name"]: document["_id"]
            for document in db.categories.find({}, {"name": 1})
        }
        if not category_ids:
            category_ids = _seed_categories(db, admin_id)
            categories_created = len(category_ids)
        products_created = _seed_products(db, admin_id, category_ids)

    current_app.logger.info(
        "Seeded %s users, %s categories and %s products",
        users_created,
        categories_created,
        products_created,
    )
    return {
        "users": users_created,
        "categories": categories_created,
        "products": products_created,
    }
