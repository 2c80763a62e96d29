"""Directory router - shop/employee availability endpoints"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...database import get_db
from ...exceptions import NotFoundError
from ...shared.validators import validate_positive_id
from .repository import DirectoryRepository
from .schemas import (
    ActiveStatusUpdate,
    EmployeeResponse,
    EmployeeStatusResponse,
    ServiceInfo,
    ShopStatusResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Directory"])


@router.get("/shops/{shop_id}/employees", response_model=list[EmployeeResponse])
async def get_shop_employees(shop_id: int, db: Session = Depends(get_db)):
    """List a shop's employees with the services they offer"""
    validate_positive_id(shop_id, "shop_id")
    repo = DirectoryRepository()
    if not repo.get_shop(db, shop_id):
        raise NotFoundError("Shop not found")
    return [
        EmployeeResponse(
            employee_id=e.id,
            shop_id=e.shop_id,
            name=e.name,
            is_active=e.is_active,
            services=[
                ServiceInfo(service_id=s.id, name=s.name, duration_minutes=s.duration_minutes)
                for s in e.services
            ],
        )
        for e in repo.get_shop_employees(db, shop_id)
    ]


@router.put("/shops/{shop_id}/status", response_model=ShopStatusResponse)
async def update_shop_status(shop_id: int, data: ActiveStatusUpdate, db: Session = Depends(get_db)):
    """Open or close a shop for new bookings"""
    validate_positive_id(shop_id, "shop_id")
    repo = DirectoryRepository()
    shop = repo.get_shop(db, shop_id)
    if not shop:
        raise NotFoundError("Shop not found")
    shop = repo.set_shop_active(db, shop, data.is_active)
    logger.info(f"🏪 Shop {shop.id} is_active={shop.is_active}")
    return ShopStatusResponse(shop_id=shop.id, name=shop.name, is_active=shop.is_active)


@router.put("/employees/{employee_id}/status", response_model=EmployeeStatusResponse)
async def update_employee_status(
    employee_id: int, data: ActiveStatusUpdate, db: Session = Depends(get_db)
):
    """Make an employee available or unavailable for new bookings"""
    validate_positive_id(employee_id, "employee_id")
    repo = DirectoryRepository()
    employee = repo.get_employee(db, employee_id)
    if not employee:
        raise NotFoundError("Employee not found")
    employee = repo.set_employee_active(db, employee, data.is_active)
    logger.info(f"💈 Employee {employee.id} is_active={employee.is_active}")
    return EmployeeStatusResponse(
        employee_id=employee.id,
        shop_id=employee.shop_id,
        name=employee.name,
        is_active=employee.is_active,
    )
