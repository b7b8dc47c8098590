import os
import sys
import uuid

import requests

base_url = os.environ.get("STOREFRONT_URL", "http://localhost:5000").rstrip("/")
api_url = f"{base_url}/api/v1"


def report(label, response):
    print(f"{label}: {response.status_code}")
    try:
        body = response.json()
    except ValueError:
        print(response.text)
        return {}
    print(f"  {body.get('message', '')}")
    return body


def main():
    session = requests.Session()
    email = f"smoke-{uuid.uuid4().hex[:8]}@example.com"

    report("Health", session.get(f"{base_url}/health", timeout=10))

    registered = report(
        "Register",
        session.post(
            f"{api_url}/auth/register",
            json={"name": "Smoke Test", "email": email, "password": "password123"},
            timeout=10,
        ),
    )
    access_token = (registered.get("data") or {}).get("access_token")
    if not access_token:
        print("Registration failed, stopping.")
        return 1
    session.headers["Authorization"] = f"Bearer {access_token}"

    products = report(
        "Products", session.get(f"{api_url}/products", params={"limit": 1}, timeout=10)
    )
    product_list = (products.get("data") or {}).get("products") or []
    if not product_list:
        print("No products available; run `flask --app storefront seed` first.")
        return 1

    report(
        "Add to cart",
        session.post(
            f"{api_url}/cart",
            json={"product_id": product_list[0]["id"], "quantity": 1},
            timeout=10,
        ),
    )
    report("Cart", session.get(f"{api_url}/cart", timeout=10))

    order = report(
        "Checkout",
        session.post(
            f"{api_url}/orders/from-cart",
            json={
                "payment_method": "cod",
                "shipping_address": {
                    "full_name": "Smoke Test",
                    "phone": "+84901234567",
                    "street": "1 Test Street",
                    "ward": "Ward 1",
                    "district": "District 1",
                    "city": "Ho Chi Minh City",
                },
            },
            timeout=10,
        ),
    )
    print(f"  order number: {(order.get('data') or {}).get('order_number')}")

    report("Loyalty stats", session.get(f"{api_url}/loyalty/stats", timeout=10))
    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except requests.RequestException as e:
        print(f"Error: {e}")
        sys.exit(1)
