import pytest
from fastapi.testclient import TestClient

import auth
from main import app, limiter
from repositories import get_repositories, memory_repositories

# bcrypt at full cost makes the suite crawl
auth.pwd_context.update(bcrypt__rounds=4)


@pytest.fixture
def repos():
    return memory_repositories()


@pytest.fixture
def client(repos):
    limiter.reset()
    app.dependency_overrides[get_repositories] = lambda: repos
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def register(client):
    def _register(email, password="secret123", first_name="Test", last_name="User", **extra):
        body = {"email": email, "password": password, "first_name": first_name, "last_name": last_name}
        body.update(extra)
        res = client.post("/auth/register", json=body)
        assert res.status_code == 201, res.text
        data = res.json()
        return {"Authorization": f"Bearer {data['access_token']}"}, data["user"]
    return _register


@pytest.fixture
def make_admin(repos):
    def _make_admin(user):
        repos.users.update(user["_id"], {"role": "admin"})
    return _make_admin


@pytest.fixture
def list_product(client):
    def _list_product(headers, name="Bike", price=100.0, **extra):
        body = {"name": name, "price": price, "category": "sports", "description": f"A {name.lower()}"}
        body.update(extra)
        res = client.post("/products", json=body, headers=headers)
        assert res.status_code == 201, res.text
        return res.json()
    return _list_product
