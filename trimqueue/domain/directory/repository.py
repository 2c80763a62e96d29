"""Directory repository - Read-only identity lookups plus availability toggles"""

from typing import Optional

from sqlalchemy.orm import Session, selectinload

from ...models import Customer, Employee, Service, Shop, employee_services


class DirectoryRepository:
    """Repository for shops, employees, customers and services"""

    @staticmethod
    def get_shop(db: Session, shop_id: int) -> Optional[Shop]:
        return db.query(Shop).filter(Shop.id == shop_id).first()

    @staticmethod
    def get_employee(db: Session, employee_id: int) -> Optional[Employee]:
        return db.query(Employee).filter(Employee.id == employee_id).first()

    @staticmethod
    def get_customer(db: Session, customer_id: int) -> Optional[Customer]:
        return db.query(Customer).filter(Customer.id == customer_id).first()

    @staticmethod
    def get_shop_employees(db: Session, shop_id: int) -> list[Employee]:
        return (
            db.query(Employee)
            .options(selectinload(Employee.services))
            .filter(Employee.shop_id == shop_id)
            .order_by(Employee.name.asc(), Employee.id.asc())
            .all()
        )

    @staticmethod
    def get_services(db: Session, service_ids: list[int]) -> list[Service]:
        if not service_ids:
            return []
        return db.query(Service).filter(Service.id.in_(service_ids)).all()

    @staticmethod
    def get_offered_service_ids(db: Session, employee_id: int, service_ids: list[int]) -> set[int]:
        """Subset of `service_ids` the employee offers"""
        rows = (
            db.query(employee_services.c.service_id)
            .filter(
                employee_services.c.employee_id == employee_id,
                employee_services.c.service_id.in_(service_ids),
            )
            .all()
        )
        return {row[0] for row in rows}

    @staticmethod
    def set_shop_active(db: Session, shop: Shop, is_active: bool) -> Shop:
        shop.is_active = is_active
        db.commit()
        db.refresh(shop)
        return shop

    @staticmethod
    def set_employee_active(db: Session, employee: Employee, is_active: bool) -> Employee:
        employee.is_active = is_active
        db.commit()
        db.refresh(employee)
        return employee
