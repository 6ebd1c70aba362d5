"""Seed a demo pharmacy with an admin, a cashier and a stocked inventory."""
import os
from datetime import timedelta
from decimal import Decimal

from pharmacy.core.security import get_password_hash
from pharmacy.db.init_db import init_db
from pharmacy.db.session import SessionLocal
from pharmacy.models.drug import Drug
from pharmacy.models.user import DEFAULT_PREFERENCES, User
from pharmacy.services.sale_service import open_sale_counter
from pharmacy.utils.clock import local_today

DEMO_PASSWORD = os.getenv("SEED_PASSWORD", "pharmacy123")

# name, category, batch, units, price, cost, months to expiry, supplier, min stock
MEDICINES = [
    ("Paracetamol 500mg", "Analgesic", "PCM-2401", 200, "2.50", "1.60", 18, "MediSupply Ltd", 40),
    ("Ibuprofen 400mg", "Analgesic", "IBU-2402", 150, "3.20", "2.10", 14, "MediSupply Ltd", 30),
    ("Amoxicillin 500mg", "Antibiotic", "AMX-2403", 100, "8.00", "5.50", 12, "PharmaLink", 20),
    ("Azithromycin 500mg", "Antibiotic", "AZI-2404", 8, "15.00", "11.00", 10, "PharmaLink", 15),
    ("Cetirizine 10mg", "Antihistamine", "CTZ-2405", 250, "1.50", "0.80", 24, "HealthBridge", 30),
    ("Loratadine 10mg", "Antihistamine", "LOR-2406", 120, "1.80", "1.00", 20, "HealthBridge", 20),
    ("Omeprazole 20mg", "Antacid", "OME-2407", 90, "4.00", "2.60", 16, "MediSupply Ltd", 20),
    ("Metformin 500mg", "Antidiabetic", "MET-2408", 180, "2.20", "1.30", 22, "PharmaLink", 40),
    ("Amlodipine 5mg", "Antihypertensive", "AML-2409", 140, "3.50", "2.00", 18, "HealthBridge", 25),
    ("ORS Sachet", "Rehydration", "ORS-2410", 5, "1.00", "0.55", 1, "CareDistributors", 25),
    ("Vitamin C 500mg", "Supplement", "VTC-2411", 300, "1.20", "0.70", 24, "CareDistributors", 50),
    ("Cough Syrup 100ml", "Cough & Cold", "CSY-2412", 60, "6.50", "4.20", 1, "CareDistributors", 10),
]


def _months_ahead(months: int):
    return local_today() + timedelta(days=30 * months)


def seed_inventory():
    init_db()
    db = SessionLocal()
    try:
        admin = db.query(User).filter(User.username == "demo_admin").first()
        if not admin:
            admin = User(
                username="demo_admin",
                email="admin@demo-pharmacy.example.com",
                hashed_password=get_password_hash(DEMO_PASSWORD),
                pharmacy_name="Demo Community Pharmacy",
                first_name="Demo",
                last_name="Admin",
                role="admin",
                preferences=dict(DEFAULT_PREFERENCES),
            )
            db.add(admin)
            db.flush()
            open_sale_counter(db, admin.id)
            db.commit()
            db.refresh(admin)
            print(f"[OK] Created admin '{admin.username}' (pharmacy {admin.id})")

        if not db.query(User).filter(User.username == "demo_cashier").first():
            db.add(User(
                username="demo_cashier",
                email="cashier@demo-pharmacy.example.com",
                hashed_password=get_password_hash(DEMO_PASSWORD),
                pharmacy_name=admin.pharmacy_name,
                first_name="Demo",
                last_name="Cashier",
                role="cashier",
                pharmacy_id=admin.id,
                preferences=dict(DEFAULT_PREFERENCES),
            ))
            db.commit()
            print("[OK] Created cashier 'demo_cashier'")

        added = 0
        for name, category, batch, units, price, cost, months, supplier, min_stock in MEDICINES:
            exists = db.query(Drug.id).filter(Drug.pharmacy_id == admin.id, Drug.batch_no == batch).first()
            if exists:
                continue
            db.add(Drug(
                pharmacy_id=admin.id,
                created_by_id=admin.id,
                name=name,
                category=category,
                batch_no=batch,
                quantity=units,
                price=Decimal(price),
                cost_price=Decimal(cost),
                expiry_date=_months_ahead(months),
                supplier=supplier,
                min_stock_level=min_stock,
            ))
            added += 1
        db.commit()

        print(f"\n[OK] Added {added} batches to '{admin.pharmacy_name}'")
        print("=" * 60)
        for name, category, batch, units, price, *_ in MEDICINES:
            print(f"  {name:<24} {category:<18} {batch:<10} {units:>4} units @ {price}")
        print(f"\nLogin with demo_admin / demo_cashier, password '{DEMO_PASSWORD}'")
    finally:
        db.close()


if __name__ == "__main__":
    seed_inventory()
