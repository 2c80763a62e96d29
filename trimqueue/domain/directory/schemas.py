"""Directory domain schemas - Pydantic models for validation"""

from pydantic import BaseModel


class ActiveStatusUpdate(BaseModel):
    """Schema for toggling a shop or employee on/off"""

    is_active: bool


class ShopStatusResponse(BaseModel):
    shop_id: int
    name: str
    is_active: bool


class EmployeeStatusResponse(BaseModel):
    employee_id: int
    shop_id: int
    name: str
    is_active: bool


class ServiceInfo(BaseModel):
    service_id: int
    name: str
    duration_minutes: int


class EmployeeResponse(EmployeeStatusResponse):
    services: list[ServiceInfo] = []
