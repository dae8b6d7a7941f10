"""Unit tests for the configuration dataclasses."""
from config.settings import PostgresConfig


def test_dsn_params_pass_password_verbatim():
    pg = PostgresConfig(host="db", port=5433, database="mega", user="ocr",
                        password="p@ss:w/rd?", sslmode="require")
    assert pg.dsn_params == {
        "host": "db", "port": 5433, "dbname": "mega", "user": "ocr",
        "password": "p@ss:w/rd?", "sslmode": "require",
    }


def test_dsn_params_omit_disabled_sslmode():
    assert "sslmode" not in PostgresConfig(sslmode="disable").dsn_params


def test_no_url_style_connection_string():
    assert not hasattr(PostgresConfig(), "connection_string")
