from pydantic import BaseModel


class MovementResponse(BaseModel):
    id: str
    garage_id: str
    garage_name: str
    type: str
    amount: float
    timestamp: str
    plate: str | None = None
    payment_method: str | None = None
    operator: str | None = None
    vehicle_type: str | None = None
    ticket_number: str | int | None = None
    notes: str | None = None
    invoice_type: str | None = None
    related_stay_id: str | None = None
    stay_entry_time: str | None = None
    stay_exit_time: str | None = None


class MovementsResponse(BaseModel):
    total: float
    movements: list[MovementResponse]


class StayResponse(BaseModel):
    id: str
    garage_id: str
    garage_name: str
    plate: str
    entry_time: str
    vehicle_type: str | None = None
    is_subscriber: bool = False


class EmployeeNameResponse(BaseModel):
    id: str
    full_name: str


class CashFlowFiltersResponse(BaseModel):
    garages: list[dict]
    employees: list[EmployeeNameResponse]
    vehicle_types: list[str]
    tariff_types: list[str]
