from typing import Any, Optional

from sqlalchemy import text
from sqlalchemy.engine import Engine


def insert_order(
    engine: Engine, number: str, customer: str = "kim", total: int = 0
) -> int:
    """새 연결로 주문을 바로 커밋하고 id를 리턴합니다."""
    with engine.begin() as conn:
        conn.execute(
            text(
                "INSERT INTO orders (number, customer, total)"
                " VALUES (:number, :customer, :total)"
            ),
            dict(number=number, customer=customer, total=total),
        )
        [[order_id]] = conn.execute(
            text("SELECT id FROM orders WHERE number=:number"), dict(number=number)
        )
    return order_id


def select_one(engine: Engine, sql: str, **params: Any) -> Optional[Any]:
    """새 연결로 조회한 첫 row를 리턴합니다."""
    with engine.connect() as conn:
        return conn.execute(text(sql), params).first()


def count_rows(engine: Engine, table: str, **filter_by: Any) -> int:
    where = " AND ".join(f"{k} = :{k}" for k in filter_by) or "1 = 1"
    with engine.connect() as conn:
        return conn.execute(
            text(f"SELECT COUNT(*) FROM {table} WHERE {where}"), filter_by
        ).scalar_one()
