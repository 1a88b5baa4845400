"""Contract and metering point reference data."""

from datetime import date
from decimal import Decimal

from pydantic import BaseModel

from dk_settlement.models.settlement import BillingFrequency


class MeteringPointInfo(BaseModel):
    """Master data for a metering point (GSRN)."""

    gsrn: str
    grid_area_code: str
    price_area: str


class ContractTerms(BaseModel):
    """Active contract terms for a metering point, joined with its product.

    Attributes:
        start_date: Billing anchor date (the supply effective date)
        margin_per_kwh: Supplier margin in DKK/kWh
        supplement_per_kwh: Product supplement in DKK/kWh
        supplier_subscription_per_month: Supplier subscription in DKK/month
    """

    gsrn: str
    billing_frequency: BillingFrequency
    start_date: date
    margin_per_kwh: Decimal
    supplement_per_kwh: Decimal = Decimal("0")
    supplier_subscription_per_month: Decimal


class SupplyPeriod(BaseModel):
    gsrn: str
    start_date: date
    end_date: date | None = None  # exclusive
