"""Requester vehicles."""

from uuid import UUID

from sqlalchemy.orm import Session

from autoserve.core.outcomes import Outcome, not_found
from autoserve.db.models import Vehicle


def list_vehicles(db: Session, owner_id: UUID) -> list[Vehicle]:
    return (
        db.query(Vehicle)
        .filter(Vehicle.owner_id == owner_id)
        .order_by(Vehicle.is_primary.desc(), Vehicle.created_at.asc())
        .all()
    )


def get_vehicle(db: Session, owner_id: UUID, vehicle_id: UUID) -> Vehicle | None:
    return db.query(Vehicle).filter(Vehicle.id == vehicle_id, Vehicle.owner_id == owner_id).first()


def add_vehicle(
    db: Session,
    owner_id: UUID,
    make: str,
    model: str,
    year: int | None = None,
    mileage: int | None = None,
    fuel_type: str | None = None,
) -> Vehicle:
    """Register a vehicle. An owner's first vehicle becomes primary."""
    has_vehicles = db.query(Vehicle.id).filter(Vehicle.owner_id == owner_id).first() is not None
    vehicle = Vehicle(
        owner_id=owner_id,
        make=make,
        model=model,
        year=year,
        mileage=mileage,
        fuel_type=fuel_type,
        is_primary=not has_vehicles,
    )
    db.add(vehicle)
    db.commit()
    db.refresh(vehicle)
    return vehicle


def set_primary(db: Session, owner_id: UUID, vehicle_id: UUID) -> Outcome[Vehicle]:
    """Make one vehicle primary and clear the flag on the rest, atomically."""
    vehicle = get_vehicle(db, owner_id, vehicle_id)
    if vehicle is None:
        return not_found("Vehicle", vehicle_id)

    db.query(Vehicle).filter(Vehicle.owner_id == owner_id, Vehicle.id != vehicle_id).update(
        {Vehicle.is_primary: False}, synchronize_session=False
    )
    db.query(Vehicle).filter(Vehicle.id == vehicle_id).update(
        {Vehicle.is_primary: True}, synchronize_session=False
    )
    db.commit()
    db.refresh(vehicle)
    return Outcome.success(vehicle)
