import pytest

from sqlgrep.tables import AmbiguousSqlError, extract_tables


@pytest.mark.parametrize(
    "sql, expected",
    [
        ("SELECT id FROM users", ["users"]),
        ("select * from public.users", ["users"]),
        ('select * from `users` u join "Orders" as o on o.user_id = u.id', ["users", "orders"]),
        ("select * from [users]", ["users"]),
        ("select * from a, b c, d as e", ["a", "b", "d"]),
        ("select * from users left outer join orders on 1 = 1", ["users", "orders"]),
        ("select * from users where id in (select user_id from orders)", ["users", "orders"]),
        ("select * from (select id from users) t", ["users"]),
        ("select * from users u, (select * from orders) o", ["users", "orders"]),
        ("select extract(year from created_at) from orders", ["orders"]),
        ("select substring(name from 1 for 3) from users", ["users"]),
        ("select * from users where a is distinct from b", ["users"]),
        ("select * from users join users on 1 = 1", ["users"]),
    ],
)
def test_extract_tables(sql, expected):
    assert extract_tables(sql) == expected


def test_comments_and_literals_are_ignored():
    sql = (
        "select 'from secrets' as x, \"from\" from users "
        "-- from secrets\n"
        "/* join secrets */ where name = 'join secrets'"
    )
    assert extract_tables(sql) == ["users"]


def test_cte_names_are_not_tables():
    sql = "with recent as (select * from orders) select * from recent"
    assert extract_tables(sql) == ["orders"]


def test_cte_comma_list():
    sql = (
        "with a as (select * from users), b (x) as (select id from orders) "
        "select * from a join b on 1 = 1"
    )
    assert extract_tables(sql) == ["users", "orders"]


def test_mysql_executable_comment_is_scanned():
    sql = "select * from users /*!50000 union select * from secrets */"
    assert extract_tables(sql) == ["users", "secrets"]


def test_dash_dash_without_space_is_not_a_comment():
    sql = "select 1--x\nfrom users join secrets on 1 = 1"
    assert "secrets" in extract_tables(sql)


def test_bracket_with_subquery_is_not_an_identifier():
    sql = "select arr[(select 1 from secrets)] from users"
    assert set(extract_tables(sql)) == {"secrets", "users"}


def test_table_function_is_reported():
    assert extract_tables("select * from generate_series(1, 3)") == ["generate_series"]


def test_backslash_escaped_quote_is_ambiguous():
    with pytest.raises(AmbiguousSqlError):
        extract_tables("select * from users where name = 'O\\'Brien'")


def test_cte_name_does_not_leak_out_of_its_subquery():
    sql = (
        "select b.* from (with secrets as (select 1 as x) select x from secrets) a "
        "join secrets b on 1=1"
    )
    assert extract_tables(sql) == ["secrets"]


def test_cte_body_referencing_its_own_name_is_a_table():
    sql = "with secrets as (select * from secrets) select * from secrets"
    assert extract_tables(sql) == ["secrets"]


def test_earlier_cte_is_visible_to_later_ones():
    sql = "with a as (select * from users), b as (select * from a) select * from b"
    assert extract_tables(sql) == ["users"]


def test_recursive_cte_may_reference_itself():
    sql = (
        "with recursive n(i) as (select 1 union all select i + 1 from n where i < 3) "
        "select i from n"
    )
    assert extract_tables(sql) == []


@pytest.mark.parametrize(
    "sql",
    [
        "select $$'$$ as x, secret from secrets where 'a' = 'a'",
        "select $q$ ' $q$ from users",
        "select * from users where name = 'open",
        'select * from "users',
        "select * from `users",
        "select * from users /* join secrets",
    ],
)
def test_dialect_dependent_boundaries_are_ambiguous(sql):
    with pytest.raises(AmbiguousSqlError):
        extract_tables(sql)


def test_positional_parameter_is_not_a_dollar_quote():
    assert extract_tables("select * from users where id = $1") == ["users"]
