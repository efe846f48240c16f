import pytest

from diag_services.storage.database import Database, SqlExecutionError


def seeded(tmp_path):
    database = Database(tmp_path / "database" / "diag.db")
    database.execute_sql_update("create table SEARCH (id integer primary key, query text)")
    database.execute_sql_update("insert into SEARCH (query) values ('ubuntu'), ('debian, stable')")
    return database


def test_query_returns_csv_with_header(tmp_path):
    database = seeded(tmp_path)

    csv_body = database.execute_sql_query("select id, query from SEARCH order by id")

    assert csv_body == 'id,query\n1,ubuntu\n2,"debian, stable"\n'


def test_update_reports_affected_rows(tmp_path):
    database = seeded(tmp_path)

    assert database.execute_sql_update("update SEARCH set query = 'x'") == "2"
    assert database.execute_sql_update("delete from SEARCH where id = 1") == "1"
    assert database.count_rows("SEARCH") == 1


def test_invalid_sql_raises(tmp_path):
    database = seeded(tmp_path)

    with pytest.raises(SqlExecutionError):
        database.execute_sql_query("select * from MISSING")
    with pytest.raises(SqlExecutionError):
        database.execute_sql_update("drop table MISSING")


def test_count_rows_rejects_non_identifiers(tmp_path):
    database = seeded(tmp_path)

    with pytest.raises(ValueError):
        database.count_rows("SEARCH; drop table SEARCH")


def test_count_rows_without_database(tmp_path):
    database = Database(tmp_path / "database" / "diag.db")

    with pytest.raises(FileNotFoundError):
        database.count_rows("SEARCH")
    assert database.folder_size() is None


def test_folder_size_sums_files(tmp_path):
    database = seeded(tmp_path)
    (tmp_path / "database" / "diag.trace.db").write_bytes(b"x" * 100)

    assert database.folder_size() >= 100
