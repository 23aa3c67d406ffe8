"""Vehicles router - a requester's garage."""

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from autoserve.core.deps import failure_to_http, get_current_user, get_db
from autoserve.schemas.vehicle import VehicleCreate, VehicleRead
from autoserve.services import vehicle_service

router = APIRouter()


def _vehicle_to_read(vehicle) -> VehicleRead:
    return VehicleRead(
        id=vehicle.id,
        make=vehicle.make,
        model=vehicle.model,
        year=vehicle.year,
        mileage=vehicle.mileage,
        fuel_type=vehicle.fuel_type,
        is_primary=vehicle.is_primary,
        display_name=vehicle.display_name,
        created_at=vehicle.created_at,
    )


@router.get("", response_model=list[VehicleRead])
def list_vehicles(
    user=Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """List the caller's vehicles, primary first."""
    return [_vehicle_to_read(v) for v in vehicle_service.list_vehicles(db, user.id)]


@router.post("", response_model=VehicleRead, status_code=201)
def add_vehicle(
    data: VehicleCreate,
    user=Depends(get_current_user),
    db: Session = Depends(get_db),
):
    vehicle = vehicle_service.add_vehicle(
        db,
        user.id,
        make=data.make,
        model=data.model,
        year=data.year,
        mileage=data.mileage,
        fuel_type=data.fuel_type,
    )
    return _vehicle_to_read(vehicle)


@router.post("/{vehicle_id}/primary", response_model=VehicleRead)
def set_primary_vehicle(
    vehicle_id: UUID,
    user=Depends(get_current_user),
    db: Session = Depends(get_db),
):
    outcome = vehicle_service.set_primary(db, user.id, vehicle_id)
    if not outcome.ok:
        raise failure_to_http(outcome.failure)
    return _vehicle_to_read(outcome.value)
