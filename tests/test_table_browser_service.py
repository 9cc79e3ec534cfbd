import pytest
import pytest_asyncio
from sqlalchemy import text

from core.cache import CacheService
from core.database import Database
from services.exceptions import InvalidIdentifierError, InvalidRequestError
from services.table_browser import TableBrowserService, coerce_row_id, validate_identifier


@pytest_asyncio.fixture
async def browser(settings, users_table, memory_store, clock):
    database = Database(settings)
    await database.startup()
    yield TableBrowserService(database, CacheService(memory_store, settings, clock=clock))
    await database.shutdown()


@pytest.mark.parametrize("value", ["users", "_private", "Users2", "a"])
def test_valid_identifiers(value):
    assert validate_identifier(value, "table name") == value


@pytest.mark.parametrize("value", ["", None, "1users", "users;", "us ers", "users--", "schema.users", "ünï", "users\n"])
def test_invalid_identifiers(value):
    with pytest.raises(InvalidIdentifierError) as exc:
        validate_identifier(value, "column name")
    assert str(exc.value) == "Invalid column name"


def test_coerce_row_id():
    assert coerce_row_id("42") == 42
    assert coerce_row_id("-1") == -1
    assert coerce_row_id("abc-1") == "abc-1"


@pytest.mark.asyncio
async def test_warm_schema_cache(browser):
    warmed = await browser.warm_schema_cache(["users", "ghost", "bad-name"])

    assert warmed == {"users": True, "ghost": False, "bad-name": False}
    assert (await browser.cache.get("schema:users")).hit
    assert not (await browser.cache.get("schema:ghost")).hit


@pytest.mark.asyncio
async def test_count_cached_separately_from_pages(browser):
    await browser.get_data("users", page=1, limit=10)
    await browser.database.delete_row("users", 1)

    # A new page shape still reuses the cached count until it expires
    other_page = await browser.get_data("users", page=2, limit=10)
    assert other_page.cache_status == "MISS"
    assert other_page.payload["pagination"]["totalCount"] == 120


@pytest.mark.asyncio
async def test_search_without_text_columns_is_empty(browser):
    async with browser.database.get_session() as session:
        await session.execute(text("CREATE TABLE numbers (id INTEGER PRIMARY KEY, n INTEGER)"))
        await session.execute(text("INSERT INTO numbers (n) VALUES (1), (2)"))
        await session.commit()

    result = await browser.get_data("numbers", search="1")

    assert result.cache_status == "BYPASS"
    assert result.payload["data"] == []
    assert result.payload["pagination"]["totalCount"] == 0


@pytest.mark.asyncio
async def test_update_requires_fields(browser):
    with pytest.raises(InvalidRequestError):
        await browser.update_row("users", "1", {"id": 5})
