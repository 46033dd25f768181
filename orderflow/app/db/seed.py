from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select

from orderflow.app.db.session import SessionLocal
from orderflow.app.db.models.models_v1 import Item, Location, Project, Supplier
from orderflow.app.db.models.core_types import LocationType
from orderflow.services.projects import UNSPECIFIED_PROJECT


def run_seed():
    db = SessionLocal()
    try:
        # 1) Main warehouse, receptions default here
        warehouse = db.scalar(select(Location).where(Location.name == "Main warehouse"))
        if not warehouse:
            warehouse = Location(name="Main warehouse", type=LocationType.physical)
            db.add(warehouse)

        # 2) Catch-all project for orders placed without one
        if not db.scalar(select(Project).where(Project.name == UNSPECIFIED_PROJECT)):
            db.add(Project(code="GEN", name=UNSPECIFIED_PROJECT))

        # 3) Demo master data
        if not db.scalar(select(Supplier).where(Supplier.name == "Demo Supplier")):
            db.add(Supplier(name="Demo Supplier", email="orders@supplier.example"))
        if not db.scalar(select(Item).where(Item.sku == "CBL-001")):
            db.add(Item(sku="CBL-001", name="Cable 3x2.5mm", unit="m", unit_cost=Decimal("1.20")))

        db.commit()
        print(f"SEED OK: location={warehouse.name}, project={UNSPECIFIED_PROJECT}")
    finally:
        db.close()


if __name__ == "__main__":
    run_seed()
