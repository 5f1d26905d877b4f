from bson import ObjectId

from main import DEFAULT_CATEGORIES


def test_default_categories_are_seeded(client):
    cats = client.get("/api/categories").json()
    assert sorted(c["slug"] for c in cats) == sorted(["t-shirt", "pants", "shorts", "cap", "zip-up", "hoodies", "polo-shirts"])
    assert len(cats) == len(DEFAULT_CATEGORIES)
    assert [c["name"] for c in cats] == sorted(c["name"] for c in cats)


def test_create_category_derives_slug(client, admin_headers):
    res = client.post("/api/categories", json={"name": "Summer Sale!", "description": "Hot deals"}, headers=admin_headers)
    assert res.status_code == 201
    assert res.json()["slug"] == "summer-sale"
    assert res.json()["isActive"] is True

    dup = client.post("/api/categories", json={"name": "summer sale"}, headers=admin_headers)
    assert dup.status_code == 400
    assert dup.json()["detail"] == "Category already exists: summer-sale"


def test_create_category_requires_admin(client):
    assert client.post("/api/categories", json={"name": "Socks"}).status_code == 401


def test_inactive_categories_are_hidden(client, admin_headers):
    created = client.post("/api/categories", json={"name": "Archive", "isActive": False}, headers=admin_headers).json()
    slugs = [c["slug"] for c in client.get("/api/categories").json()]
    assert created["slug"] not in slugs
    assert client.get("/api/categories/archive/products").status_code == 404


def test_category_products(client, admin_headers, product):
    res = client.get("/api/categories/t-shirt/products")
    assert res.status_code == 200
    assert [p["id"] for p in res.json()] == [product["id"]]
    assert client.get("/api/categories/pants/products").json() == []
    assert client.get("/api/categories/nope/products").status_code == 404


def test_rename_category_moves_products(client, admin_headers, db, product):
    tees = db["category"].find_one({"slug": "t-shirt"})
    res = client.put(f"/api/categories/{tees['_id']}", json={"name": "Tees"}, headers=admin_headers)
    assert res.status_code == 200
    assert res.json()["slug"] == "tees"
    moved = client.get(f"/api/products/{product['id']}").json()
    assert moved["category"] == "tees"


def test_rename_category_to_existing_slug(client, admin_headers, db):
    tees = db["category"].find_one({"slug": "t-shirt"})
    res = client.put(f"/api/categories/{tees['_id']}", json={"name": "Pants"}, headers=admin_headers)
    assert res.status_code == 400


def test_update_category_description_only(client, admin_headers, db):
    cap = db["category"].find_one({"slug": "cap"})
    res = client.put(f"/api/categories/{cap['_id']}", json={"description": "Headwear"}, headers=admin_headers)
    assert res.json()["description"] == "Headwear"
    assert res.json()["slug"] == "cap"


def test_delete_category_in_use(client, admin_headers, db, product):
    tees = db["category"].find_one({"slug": "t-shirt"})
    res = client.delete(f"/api/categories/{tees['_id']}", headers=admin_headers)
    assert res.status_code == 400

    client.delete(f"/api/products/{product['id']}", headers=admin_headers)
    res = client.delete(f"/api/categories/{tees['_id']}", headers=admin_headers)
    assert res.status_code == 200
    assert db["category"].find_one({"slug": "t-shirt"}) is None


def test_delete_missing_category(client, admin_headers):
    assert client.delete(f"/api/categories/{ObjectId()}", headers=admin_headers).status_code == 404
    assert client.delete("/api/categories/bad", headers=admin_headers).status_code == 400
