import pytest

from sqlgrep.safety import Safety


@pytest.fixture
def safety():
    return Safety()


@pytest.mark.parametrize(
    "sql",
    [
        "SELECT id FROM users WHERE name = ?",
        "SeLeCt id FrOm users",
        "select * from users;",
        "select 'drop table users' as note from users",
        "select count(*) from users where status in ('active', 'delete me')",
        "select u.name, o.total from users u join orders o on o.user_id = u.id",
    ],
)
def test_allows_read_only_select(safety, sql):
    v = safety.check(sql)
    assert v.ok, v.reason


def test_zero_width_characters_are_stripped(safety):
    v = safety.check("sel\u200bect * from users\ufeff")
    assert v.ok
    assert v.sql == "select * from users"


@pytest.mark.parametrize(
    "sql, reason",
    [
        ("", "empty_sql"),
        ("   ", "empty_sql"),
        ("delete from users", "non_select"),
        ("with x as (select 1) select * from x", "non_select"),
        ("select * from users; drop table users", "multiple_statements"),
        ("select 1; select 2", "multiple_statements"),
    ],
)
def test_rejections_with_reason(safety, sql, reason):
    v = safety.check(sql)
    assert not v.ok
    assert v.reason == reason


@pytest.mark.parametrize(
    "sql",
    [
        "select * into backup_users from users",
        "select * from users -- update later",
        "SELECT pg_sleep(10)",
    ],
)
def test_forbidden_keywords(safety, sql):
    v = safety.check(sql)
    assert not v.ok
    assert v.reason.startswith("forbidden_keyword")


def test_ambiguous_backslash_literal_is_rejected(safety):
    v = safety.check("select * from users where name = 'x\\' or 1 = 1 -- '")
    assert not v.ok
    assert v.reason.startswith("ambiguous_literal")


def test_max_length(safety):
    v = Safety(max_len=50).check("select " + "id, " * 20 + "name from users")
    assert not v.ok
    assert v.reason == "sql_too_long"
