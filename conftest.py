import pytest

import library_api.database as database
from library_api.accounts import Accounts
from library_api.config import settings
from library_api.library import Library


@pytest.fixture(autouse=True)
def isolated_db(tmp_path, monkeypatch, request):
    # Each test gets its own database file and upload directory
    db_file = str(tmp_path / f"test_{request.node.name}.db")
    monkeypatch.setattr(database, "DATABASE_FILE", db_file)
    monkeypatch.setattr(settings, "enable_overdue_sweep", False)
    monkeypatch.setattr(settings, "upload_dir", str(tmp_path / "uploads"))
    return db_file


@pytest.fixture
def lib(isolated_db):
    return Library(db_file=isolated_db)


@pytest.fixture
def accounts(lib):
    return Accounts(lib)


@pytest.fixture
def make_book(lib):
    def _make(title="Dune", author="Frank Herbert", **extra):
        fields = {"description": "Desert planet epic", "publication_year": 1965}
        fields.update(extra)
        return lib.create_book(title=title, author=author, **fields)
    return _make


@pytest.fixture
def make_user(accounts):
    counter = {"n": 0}

    def _make(name=None, email=None, password="secret-pass"):
        counter["n"] += 1
        n = counter["n"]
        user, token = accounts.register(name or f"Reader {n}", email or f"reader{n}@example.com", password)
        return user, token
    return _make
