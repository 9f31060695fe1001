"""
repositories/request_repo.py
-----------------------------
Read-only access to pending peer requests (money and friend requests).
Those tables belong to the social features; this module never writes.
"""

from db.connection import transaction
from models.notification import PendingRequestItem


class RequestRepository:
    """Reads pending requests addressed to a user."""

    def list_pending(self, owner_id: int) -> list[PendingRequestItem]:
        sql = """
            SELECT id, 'money' AS request_type, from_name, amount, note, created_at
              FROM money_requests
             WHERE to_user_id = %s AND status = 'pending'
            UNION ALL
            SELECT id, 'friend' AS request_type, from_name, NULL, NULL, created_at
              FROM friend_requests
             WHERE user_id = %s AND status = 'pending'
            ORDER BY created_at ASC;
        """
        with transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, (owner_id, owner_id))
                rows = cur.fetchall()
        return [
            PendingRequestItem(
                id=row[0],
                owner_id=owner_id,
                request_type=row[1],
                counterparty=row[2],
                amount=float(row[3]) if row[3] is not None else None,
                note=row[4],
                created_at=row[5],
            )
            for row in rows
        ]
