import threading
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from pharmacy.core.exceptions import (
    ConflictError,
    DrugNotFoundError,
    InsufficientStockError,
    StorageFailure,
    ValidationError,
)
from pharmacy.core.tenancy import Caller
from pharmacy.models.drug import Drug
from pharmacy.models.sale import Sale, SaleCounter
from pharmacy.schemas.sale import SaleCreate
from pharmacy.services import inventory_service, sale_service


def basket(*lines, **fields):
    return SaleCreate(items=[{"drug_id": d, "quantity": q} for d, q in lines], **fields)


def sale_count(db):
    return db.query(Sale).count()


# ==============================================================================
# HAPPY PATH
# ==============================================================================

def test_totals_and_snapshot(db, caller, make_drug):
    para = make_drug(caller, batch_no="P-1", quantity=50, price=Decimal("2.50"), cost_price=Decimal("1.60"))
    ibu = make_drug(caller, name="Ibuprofen 400mg", batch_no="I-1", quantity=20,
                    price=Decimal("3.20"), cost_price=Decimal("2.10"))

    sale = sale_service.process_sale(db, caller, basket((para.id, 4), (ibu.id, 2), customer_name=" Ada "))

    assert sale.sale_number == "SL0001"
    assert sale.total_items == 6
    assert sale.total_amount == Decimal("16.40")  # 10.00 + 6.40
    assert sale.total_cost == Decimal("10.60")    # 6.40 + 4.20
    assert sale.total_profit == Decimal("5.80")
    assert sale.profit_margin == Decimal("35.37")
    assert sale.payment_method == "cash"
    assert sale.customer_name == "Ada"
    assert sale.status == "completed"
    assert sale.sold_by_id == caller.user_id

    lines = sale.line_items
    assert lines[0]["drug_name"] == "Paracetamol 500mg"
    assert lines[0]["batch_no"] == "P-1"
    assert lines[0]["unit_price"] == Decimal("2.50")
    assert lines[0]["total_price"] == Decimal("10.00")
    assert sum(line["total_price"] for line in lines) == sale.total_amount

    db.refresh(para)
    db.refresh(ibu)
    assert para.quantity == 46
    assert ibu.quantity == 18


def test_analytics_fields_set(db, caller, make_drug):
    drug = make_drug(caller)
    sale = sale_service.process_sale(db, caller, basket((drug.id, 1), payment_method="card"))

    assert sale.payment_method == "card"
    assert sale.day_of_week in ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")
    assert sale.month
    assert 0 <= sale.hour <= 23
    assert sale.year >= 2024


def test_zero_cost_counts_as_cost_data(db, caller, make_drug):
    drug = make_drug(caller, price=Decimal("5.00"), cost_price=Decimal("0"))
    sale = sale_service.process_sale(db, caller, basket((drug.id, 2)))

    assert sale.total_cost == Decimal("0.00")
    assert sale.total_profit == Decimal("10.00")
    assert sale.profit_margin == Decimal("100.00")


def test_free_item_has_zero_margin(db, caller, make_drug):
    drug = make_drug(caller, price=Decimal("0"), cost_price=Decimal("0"))
    sale = sale_service.process_sale(db, caller, basket((drug.id, 1)))

    assert sale.total_amount == Decimal("0.00")
    assert sale.profit_margin == Decimal("0.00")


def test_sale_numbers_increase_per_pharmacy(db, caller, other_admin, make_drug):
    mine = make_drug(caller)
    theirs = make_drug(Caller.from_user(other_admin))
    other_caller = Caller.from_user(other_admin)

    numbers = [sale_service.process_sale(db, caller, basket((mine.id, 1))).sale_number for _ in range(3)]
    first_other = sale_service.process_sale(db, other_caller, basket((theirs.id, 1))).sale_number

    assert numbers == ["SL0001", "SL0002", "SL0003"]
    assert first_other == "SL0001"


def test_opening_a_counter_twice_keeps_its_value(db, caller, make_drug):
    sale_service.open_sale_counter(db, caller.tenant_id)
    db.commit()
    drug = make_drug(caller)
    sale_service.process_sale(db, caller, basket((drug.id, 1)))

    sale_service.open_sale_counter(db, caller.tenant_id)
    db.commit()

    assert db.get(SaleCounter, caller.tenant_id).value == 1
    assert sale_service.process_sale(db, caller, basket((drug.id, 1))).sale_number == "SL0002"


def test_staff_sale_belongs_to_pharmacy(db, admin, cashier, make_drug):
    drug = make_drug(Caller.from_user(admin))
    sale = sale_service.process_sale(db, Caller.from_user(cashier), basket((drug.id, 1)))

    assert sale.pharmacy_id == admin.id
    assert sale.sold_by_id == cashier.id


# ==============================================================================
# FAILURES LEAVE NOTHING BEHIND
# ==============================================================================

def test_empty_basket(db, caller):
    with pytest.raises(ValidationError) as exc:
        sale_service.process_sale(db, caller, SaleCreate(items=[]))
    assert exc.value.message == "Sale must have at least one item"


def test_insufficient_stock_leaves_quantity(db, caller, make_drug):
    drug = make_drug(caller, quantity=5)

    with pytest.raises(InsufficientStockError) as exc:
        sale_service.process_sale(db, caller, basket((drug.id, 6)))

    assert exc.value.details == {
        "drug": "Paracetamol 500mg", "available": 5, "requested": 6, "drug_id": drug.id, "line": 0,
    }
    db.refresh(drug)
    assert drug.quantity == 5
    assert sale_count(db) == 0


def test_second_line_failure_is_atomic(db, caller, make_drug):
    good = make_drug(caller, batch_no="G-1", quantity=10)
    short = make_drug(caller, batch_no="S-1", quantity=1)

    with pytest.raises(InsufficientStockError) as exc:
        sale_service.process_sale(db, caller, basket((good.id, 3), (short.id, 2)))

    assert exc.value.details["line"] == 1
    db.refresh(good)
    db.refresh(short)
    assert good.quantity == 10
    assert short.quantity == 1
    assert sale_count(db) == 0


def test_unknown_drug_names_line(db, caller, make_drug):
    good = make_drug(caller)
    with pytest.raises(DrugNotFoundError) as exc:
        sale_service.process_sale(db, caller, basket((good.id, 1), (424242, 1)))

    assert exc.value.details == {"drug_id": 424242, "line": 1}
    db.refresh(good)
    assert good.quantity == 100


def test_cannot_sell_other_pharmacy_drug(db, caller, other_admin, make_drug):
    theirs = make_drug(Caller.from_user(other_admin))
    with pytest.raises(DrugNotFoundError):
        sale_service.process_sale(db, caller, basket((theirs.id, 1)))


def test_repeated_lines_checked_against_combined_quantity(db, caller, make_drug):
    drug = make_drug(caller, quantity=5)

    with pytest.raises(InsufficientStockError) as exc:
        sale_service.process_sale(db, caller, basket((drug.id, 3), (drug.id, 3)))
    assert exc.value.details["requested"] == 6

    sale = sale_service.process_sale(db, caller, basket((drug.id, 2), (drug.id, 3)))
    assert sale.total_items == 5
    db.refresh(drug)
    assert drug.quantity == 0


def test_commit_failure_is_retryable_and_leaves_nothing(db, caller, make_drug, monkeypatch):
    drug = make_drug(caller, quantity=10)

    def failing_commit():
        raise OperationalError("COMMIT", {}, Exception("database is locked"))

    monkeypatch.setattr(db, "commit", failing_commit)
    with pytest.raises(StorageFailure) as exc:
        sale_service.process_sale(db, caller, basket((drug.id, 3)))
    monkeypatch.undo()

    assert exc.value.retryable is True
    assert exc.value.to_dict()["retryable"] is True
    db.refresh(drug)
    assert drug.quantity == 10
    assert sale_count(db) == 0


def test_batch_deleted_before_commit_is_not_sold(db, caller, make_drug, monkeypatch):
    drug = make_drug(caller, quantity=10)
    validated = inventory_service.find_sellable

    def validate_then_delete(session, pharmacy_id, drug_id):
        found = validated(session, pharmacy_id, drug_id)
        session.query(Drug).filter(Drug.id == drug_id).update({"is_active": False})
        return found

    monkeypatch.setattr(sale_service, "find_sellable", validate_then_delete)
    with pytest.raises(DrugNotFoundError):
        sale_service.process_sale(db, caller, basket((drug.id, 2)))

    db.refresh(drug)
    assert drug.quantity == 10
    assert sale_count(db) == 0


# ==============================================================================
# SNAPSHOTS AND IMMUTABILITY
# ==============================================================================

def test_soft_deleted_drug_keeps_sale_snapshot(db, caller, make_drug):
    drug = make_drug(caller, name="Cough Syrup", batch_no="CS-1")
    sale = sale_service.process_sale(db, caller, basket((drug.id, 2)))

    inventory_service.soft_delete_drug(db, caller, drug.id)

    stored = sale_service.get_sale(db, caller.tenant_id, sale.id)
    assert stored.line_items[0]["drug_name"] == "Cough Syrup"
    assert stored.line_items[0]["batch_no"] == "CS-1"

    view = sale_service.present_sales(db, [stored])[0]
    assert view["items"][0]["drug_name"] == "Cough Syrup"
    assert view["items"][0]["drug"]["is_active"] is False


def test_later_price_change_does_not_touch_history(db, caller, make_drug):
    from pharmacy.schemas.drug import DrugUpdate

    drug = make_drug(caller, price=Decimal("2.50"))
    sale = sale_service.process_sale(db, caller, basket((drug.id, 2)))
    inventory_service.update_drug(db, caller, drug.id, DrugUpdate(price=Decimal("9.99")))

    db.refresh(sale)
    assert sale.total_amount == Decimal("5.00")
    assert sale.line_items[0]["unit_price"] == Decimal("2.50")


def test_sale_fields_are_immutable(db, caller, make_drug):
    drug = make_drug(caller)
    sale = sale_service.process_sale(db, caller, basket((drug.id, 1)))

    sale.total_amount = Decimal("0.01")
    with pytest.raises(ConflictError):
        db.commit()
    db.rollback()

    db.delete(sale)
    with pytest.raises(ConflictError):
        db.commit()
    db.rollback()

    assert sale_count(db) == 1


# ==============================================================================
# STATUS
# ==============================================================================

def test_status_transitions(db, caller, make_drug):
    drug = make_drug(caller, quantity=10)
    sale = sale_service.process_sale(db, caller, basket((drug.id, 4)))

    refunded = sale_service.change_sale_status(db, caller, sale.id, "refunded")
    assert refunded.status == "refunded"

    with pytest.raises(ConflictError):
        sale_service.change_sale_status(db, caller, sale.id, "cancelled")

    # No restock on refund
    db.refresh(drug)
    assert drug.quantity == 6


# ==============================================================================
# CONCURRENCY
# ==============================================================================

def _run_concurrently(session_factory, caller, baskets):
    results, errors = [], []
    barrier = threading.Barrier(len(baskets))

    def worker(b):
        session = session_factory()
        try:
            barrier.wait()
            results.append(sale_service.process_sale(session, caller, b).sale_number)
        except InsufficientStockError as e:
            errors.append(e)
        finally:
            session.close()

    threads = [threading.Thread(target=worker, args=(b,)) for b in baskets]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results, errors


def test_concurrent_sales_summing_to_stock_both_succeed(db, session_factory, caller, make_drug):
    drug = make_drug(caller, quantity=10)

    results, errors = _run_concurrently(session_factory, caller, [basket((drug.id, 4)), basket((drug.id, 6))])

    assert errors == []
    assert sorted(results) == ["SL0001", "SL0002"]
    db.refresh(drug)
    assert drug.quantity == 0


def test_concurrent_oversell_never_goes_negative(db, session_factory, caller, make_drug):
    drug = make_drug(caller, quantity=5)

    results, errors = _run_concurrently(session_factory, caller, [basket((drug.id, 1)) for _ in range(8)])

    assert len(results) == 5
    assert len(errors) == 3
    assert len(set(results)) == 5
    db.refresh(drug)
    assert drug.quantity == 0
    assert db.query(Drug).filter(Drug.quantity < 0).count() == 0
