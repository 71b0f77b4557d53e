# pylint: disable=protected-access
"""SqlAlchemy 레포지터리 통합 테스트."""
from datetime import datetime

import pytest
from sqlalchemy import event
from sqlalchemy.exc import SAWarning

from fastuow.core import InvalidArgumentError, InvalidStateError
from fastuow.uow import SqlAlchemyUnitOfWork
from tests import random_customer, random_order_number
from tests.app.domain.models import Order, Setting
from tests.integration import count_rows, insert_order, select_one


def new_order(customer: str = "", total: int = 0) -> Order:
    return Order(random_order_number(), customer or random_customer(), total=total)


def test_insert_is_staged_until_save_changes(engine, uow: SqlAlchemyUnitOfWork):
    order = new_order(total=10)
    before = datetime.now()
    uow.repository(Order).insert(order)
    after = datetime.now()

    assert count_rows(engine, "orders") == 0
    assert uow.save_changes() == 1
    assert count_rows(engine, "orders", number=order.number) == 1
    assert order.id is not None
    assert order.created and before <= order.created <= after
    assert order.modified_time is None


def test_query_results_are_not_tracked(engine, uow: SqlAlchemyUnitOfWork):
    number = random_order_number()
    insert_order(engine, number, total=10)
    repo = uow.repository(Order)

    [order] = repo.query(number=number).all()
    order.total = 999

    # update 전까지는 변경이 저장되지 않아야 합니다.
    assert uow.save_changes() == 0
    assert select_one(engine, "SELECT total FROM orders WHERE number=:n", n=number) == (
        10,
    )

    before = datetime.now()
    repo.update(order)
    after = datetime.now()
    assert uow.save_changes() == 1

    assert select_one(engine, "SELECT total FROM orders WHERE number=:n", n=number) == (
        999,
    )
    assert order.modified_time and before <= order.modified_time <= after


def test_where_results_are_tracked(engine, uow: SqlAlchemyUnitOfWork):
    number = random_order_number()
    insert_order(engine, number, total=10)

    order = uow.repository(Order).where(number=number).first()
    assert order
    order.total = 50

    assert uow.save_changes() == 1
    assert select_one(engine, "SELECT total FROM orders WHERE number=:n", n=number) == (
        50,
    )


def test_update_merges_into_tracked_entity(engine, uow: SqlAlchemyUnitOfWork):
    number = random_order_number()
    order_id = insert_order(engine, number, total=10)
    repo = uow.repository(Order)

    tracked = repo.find(order_id)
    [detached] = repo.query(id=order_id)
    detached.total = 77
    repo.update(detached)

    assert tracked and tracked.total == 77
    assert tracked.modified_time is not None
    assert uow.save_changes() == 1
    assert select_one(engine, "SELECT total FROM orders WHERE id=:id", id=order_id) == (
        77,
    )


def test_query_view_filters_orders_and_counts(engine, uow: SqlAlchemyUnitOfWork):
    customer = random_customer()
    for total in (1, 2, 3):
        insert_order(engine, random_order_number(), customer, total)

    view = uow.repository(Order).query(customer=customer)

    assert view.count() == 3
    assert view.filter(Order.total >= 2).count() == 2
    assert [it.total for it in view.order_by(Order.total.desc()).limit(2)] == [3, 2]
    assert [it.total for it in view.order_by(Order.total).offset(1)] == [2, 3]
    assert view.filter(Order.total > 10).first() is None


def test_raw_query_uses_named_parameters(engine, uow: SqlAlchemyUnitOfWork):
    customer = random_customer()
    number = random_order_number()
    insert_order(engine, number, customer)
    insert_order(engine, random_order_number())

    orders = uow.repository(Order).raw_query(
        "SELECT * FROM orders WHERE customer = :customer", customer=customer
    )

    assert [it.number for it in orders] == [number]
    # 지연 평가되므로 여러번 순회할 수 있습니다.
    assert len(orders.all()) == 1


def test_find_returns_none_when_missing(engine, uow: SqlAlchemyUnitOfWork):
    number = random_order_number()
    order_id = insert_order(engine, number)
    repo = uow.repository(Order)

    found = repo.find(order_id)
    assert found and found.number == number
    assert repo.find(order_id + 1000) is None

    with pytest.raises(InvalidArgumentError):
        repo.find()


def test_exists_and_first_or_default(engine, uow: SqlAlchemyUnitOfWork):
    customer = random_customer()
    insert_order(engine, random_order_number(), customer, total=200)
    repo = uow.repository(Order)

    assert repo.exists(Order.total > 100, customer=customer)
    assert not repo.exists(Order.total > 300, customer=customer)
    assert repo.first_or_default(customer=customer).total == 200
    assert repo.first_or_default(number="no-such-order") is None


def test_delete_by_key_does_not_select(engine, uow: SqlAlchemyUnitOfWork):
    order_id = insert_order(engine, random_order_number())
    statements: list[str] = []

    def capture(conn, cursor, statement, parameters, context, executemany):
        statements.append(statement.strip().upper())

    repo = uow.repository(Order)
    event.listen(engine, "before_cursor_execute", capture)
    try:
        repo.delete(order_id)
        assert uow.save_changes() == 1
    finally:
        event.remove(engine, "before_cursor_execute", capture)

    assert [it for it in statements if it.startswith("SELECT")] == []
    assert len([it for it in statements if it.startswith("DELETE")]) == 1
    assert count_rows(engine, "orders", id=order_id) == 0


def test_save_changes_counts_staged_entities(engine, uow: SqlAlchemyUnitOfWork):
    """저장 결과는 DB가 바꾼 row 수가 아니라 스테이징된 엔티티 수입니다."""
    uow.repository(Order).delete_by_key(12345)

    with pytest.warns(SAWarning):
        assert uow.save_changes() == 1

    assert count_rows(engine, "orders") == 0


def test_delete_by_key_uses_tracked_instance(engine, uow: SqlAlchemyUnitOfWork):
    order_id = insert_order(engine, random_order_number())
    repo = uow.repository(Order)
    tracked = repo.find(order_id)

    repo.delete_by_key(order_id)

    assert tracked in uow.context.session.deleted
    assert uow.save_changes() == 1
    assert count_rows(engine, "orders") == 0


def test_delete_without_key_field_falls_back_to_find(
    engine, uow: SqlAlchemyUnitOfWork
):
    repo = uow.repository(Setting)
    repo.insert(Setting("theme", "dark"))
    uow.save_changes()

    repo.delete("theme")
    assert uow.save_changes() == 1
    assert count_rows(engine, "settings") == 0

    # 없는 키를 지우는 것은 에러가 아닙니다.
    repo.delete_by_key("no-such-setting")
    assert uow.save_changes() == 0


def test_delete_entities(engine, uow: SqlAlchemyUnitOfWork):
    customer = random_customer()
    orders = [new_order(customer), new_order(customer), new_order(customer)]
    repo = uow.repository(Order)
    repo.insert(orders)
    uow.save_changes()

    repo.delete(orders[:2])

    assert uow.save_changes() == 2
    assert count_rows(engine, "orders", customer=customer) == 1


def test_delete_transient_entity_by_its_key(engine, uow: SqlAlchemyUnitOfWork):
    number = random_order_number()
    order_id = insert_order(engine, number)
    repo = uow.repository(Order)

    repo.delete(Order(number, "kim", id=order_id))
    assert uow.save_changes() == 1
    assert count_rows(engine, "orders") == 0

    with pytest.raises(InvalidArgumentError):
        repo.delete(new_order())


def test_auto_save_saves_each_call(engine, make_uow):
    uow = make_uow("auto", auto_save=True)
    order = new_order()

    uow.repository(Order).insert(order)
    assert count_rows(engine, "orders", number=order.number) == 1

    uow.repository(Order).delete(order)
    assert count_rows(engine, "orders", number=order.number) == 0


def test_disposed_repository_raises_invalid_state(engine, uow: SqlAlchemyUnitOfWork):
    repo = uow.repository(Order)
    uow.dispose()

    with pytest.raises(InvalidStateError):
        repo.find(1)
    with pytest.raises(InvalidStateError):
        repo.query().all()
    with pytest.raises(InvalidStateError):
        repo.insert(new_order())
