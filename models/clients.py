"""
Mega OCR: Read-only client directory used for duplicate detection.

The clients table is owned by the CRM side; this module only reads the
active rows. address and contact_persons are JSONB columns.
Shares the connection pool in models.api_usage.
"""
import json
import logging
from typing import List

import psycopg2

from models.api_usage import get_conn, put_conn
from tools.cards.models import Address, ClientRecord, ContactPerson

logger = logging.getLogger("mega.models.clients")


def _json_field(value, default):
    # psycopg2 decodes JSONB already; plain TEXT columns come back as str
    if value is None:
        return default
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return default
    return value


def row_to_client(row) -> ClientRecord:
    client_id, company_name, business_type, address, contacts = row
    contacts = _json_field(contacts, [])
    return ClientRecord(
        id=str(client_id),
        company_name=company_name or "",
        business_type=business_type or "",
        address=Address.from_dict(_json_field(address, {})),
        contact_persons=[
            ContactPerson.from_dict(c) for c in contacts if isinstance(c, dict)
        ],
    )


class ClientDirectory:
    """Active clients, read in full on every call."""

    def list_active_clients(self) -> List[ClientRecord]:
        """Raises RuntimeError / psycopg2.Error when the directory is unreadable."""
        conn = get_conn()
        if not conn:
            raise RuntimeError("No DB connection for client directory")
        try:
            cur = conn.cursor()
            cur.execute("""
                SELECT id, company_name, business_type, address, contact_persons
                FROM clients
                WHERE is_active
            """)
            rows = cur.fetchall()
            cur.close()
        except psycopg2.Error as e:
            logger.error("Failed to read client directory: %s", e)
            raise
        finally:
            put_conn(conn)

        clients = [row_to_client(row) for row in rows]
        logger.debug("Loaded %d active clients", len(clients))
        return clients
