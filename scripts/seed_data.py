"""Seed script to populate the database with a demo building and settle one year."""

from datetime import date
from decimal import Decimal

from settlement.core.config import settings
from settlement.core.database import Base, SessionLocal, engine
from settlement.core.logging import setup_logging
from settlement.models.advance import AdvanceMonthly, Payment
from settlement.models.building import Building
from settlement.models.cost import Cost
from settlement.models.enums import Methodology
from settlement.models.meter import Meter
from settlement.models.meter_reading import MeterReading
from settlement.models.service import Service
from settlement.models.unit import PersonMonths, Unit
from settlement.services.billing_engine import BillingEngine
from settlement.services.billing_repository import SqlAlchemyBillingRepository

YEAR = 2024


def seed_database() -> None:
    """Seed the database with sample data and run the settlement."""
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        if db.query(Building).first():
            print("Database already has data. Skipping seed.")
            return

        print("Seeding database...")

        building = Building(name="Demo House", address="Lipova 12, Brno")
        db.add(building)
        db.flush()
        print(f"Created building: {building.name} (ID: {building.id})")

        units = [
            Unit(
                building_id=building.id,
                unit_number=f"{i + 1:02d}",
                total_area=area,
                floor_area=area - Decimal("4.5"),
                share_numerator=numerator,
                share_denominator=1000,
                resident_count=residents,
                variable_symbol=f"2024{i + 1:02d}",
            )
            for i, (area, numerator, residents) in enumerate(
                [
                    (Decimal("62.40"), 312, 2),
                    (Decimal("48.10"), 241, 1),
                    (Decimal("89.30"), 447, 4),
                ]
            )
        ]
        db.add_all(units)
        db.flush()
        print(f"Created {len(units)} units")

        heating = Service(
            building_id=building.id,
            name="Heating",
            methodology=Methodology.AREA.value,
            order=1,
        )
        hot_water = Service(
            building_id=building.id,
            name="Hot water",
            methodology=Methodology.CONSUMPTION.value,
            measurement_unit="m3",
            order=2,
        )
        cold_water = Service(
            building_id=building.id,
            name="Cold water",
            methodology=Methodology.DUAL_RATE.value,
            cost_with_meter=Decimal("98.50"),
            cost_without_meter=Decimal("98.50"),
            guidance_number=Decimal("35"),
            order=3,
        )
        elevator = Service(
            building_id=building.id,
            name="Elevator",
            methodology=Methodology.OCCUPANCY.value,
            order=4,
        )
        repair_fund = Service(
            building_id=building.id,
            name="Repair fund",
            methodology=Methodology.SHARE.value,
            is_repair_fund=True,
            order=5,
        )
        services = [heating, hot_water, cold_water, elevator, repair_fund]
        db.add_all(services)
        db.flush()
        print(f"Created {len(services)} services")

        db.add_all(
            [
                Cost(building_id=building.id, service_id=heating.id, period=YEAR,
                     amount=Decimal("84250.00"), description="Heating plant invoice"),
                Cost(building_id=building.id, service_id=hot_water.id, period=YEAR,
                     amount=Decimal("21400.00"), description="Hot water invoice"),
                Cost(building_id=building.id, service_id=cold_water.id, period=YEAR,
                     amount=Decimal("16800.00"), description="Water utility invoice"),
                Cost(building_id=building.id, service_id=elevator.id, period=YEAR,
                     amount=Decimal("9600.00"), description="Elevator maintenance"),
                Cost(building_id=building.id, service_id=repair_fund.id, period=YEAR,
                     amount=Decimal("36000.00"), description="Repair fund contribution"),
            ]
        )

        # Hot water meters in every unit, cold water meter only in the first one
        for unit, hot, cold in zip(units, ["41.2", "22.8", "63.0"], ["38.4", None, None]):
            for service, prefix, reading in [(hot_water, "HW", hot), (cold_water, "CW", cold)]:
                if reading is None:
                    continue
                meter = Meter(
                    unit_id=unit.id,
                    service_id=service.id,
                    serial_number=f"{prefix}-{unit.unit_number}",
                )
                db.add(meter)
                db.flush()
                db.add(
                    MeterReading(
                        meter_id=meter.id,
                        period=YEAR,
                        reading_date=date(YEAR, 12, 31),
                        value=Decimal(reading),
                        consumption=Decimal(reading),
                    )
                )

        for unit in units:
            for month in range(1, 13):
                db.add(PersonMonths(unit_id=unit.id, year=YEAR, month=month,
                                    person_count=unit.resident_count))
                for service, amount in [(heating, "450.00"), (hot_water, "150.00"),
                                        (cold_water, "120.00"), (elevator, "60.00"),
                                        (repair_fund, "250.00")]:
                    db.add(AdvanceMonthly(unit_id=unit.id, service_id=service.id, year=YEAR,
                                          month=month, amount=Decimal(amount)))
                db.add(Payment(variable_symbol=unit.variable_symbol, period=YEAR,
                               amount=Decimal("1030.00"), paid_on=date(YEAR, month, 15)))

        db.commit()
        print(f"Created occupancy, advances and payments for {YEAR}")

        summary = BillingEngine.from_settings(SqlAlchemyBillingRepository(db), settings).calculate(
            building.id, YEAR
        )
        print(f"\nSettlement calculated for {summary.unit_count} units and "
              f"{summary.service_count} services")
        for total in summary.per_service_totals:
            print(f"  {total.name}: {total.building_total_cost} -> {total.distributed_cost}")
        for warning in summary.warnings:
            print(f"  warning [{warning.code.value}] {warning.message}")
        print(f"\nBilling period ID: {summary.billing_period_id}")
    finally:
        db.close()


if __name__ == "__main__":
    setup_logging()
    seed_database()
