from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from models import (
    ExpenseCategory,
    ExpenseFrequency,
    ExpenseType,
    InstallmentFrequency,
    PaymentStatus,
    YearlyPaymentStrategy,
)


class PeriodIn(BaseModel):
    year: int = Field(..., ge=1970, le=3000)
    month: int = Field(..., ge=1, le=12)


class HouseholdIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)


class ExpenseIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    amount_cents: int = Field(..., ge=0)
    type: ExpenseType
    category: ExpenseCategory
    frequency: Optional[ExpenseFrequency] = None
    yearly_payment_strategy: Optional[YearlyPaymentStrategy] = None
    installment_frequency: Optional[InstallmentFrequency] = None
    installment_count: Optional[int] = Field(default=None, ge=1, le=120)
    payment_month: Optional[int] = Field(default=None, ge=1, le=12)
    month: Optional[int] = Field(default=None, ge=1, le=12)
    year: Optional[int] = Field(default=None, ge=1970, le=3000)
    paid_by_user_id: Optional[int] = None

    @model_validator(mode="after")
    def check_schedule_shape(self) -> "ExpenseIn":
        installments = self.yearly_payment_strategy == YearlyPaymentStrategy.installments

        if self.category == ExpenseCategory.recurring:
            if self.frequency is None:
                raise ValueError("Recurring expenses need a frequency")
            if self.frequency == ExpenseFrequency.monthly:
                if self.yearly_payment_strategy is not None:
                    raise ValueError(
                        "A payment strategy only applies to yearly or one-time expenses"
                    )
            elif self.yearly_payment_strategy is None:
                raise ValueError("Yearly expenses need a payment strategy")
            elif (
                self.yearly_payment_strategy == YearlyPaymentStrategy.full
                and self.payment_month is None
            ):
                raise ValueError("Yearly full payments need a payment month")
        else:
            if self.frequency is not None:
                raise ValueError("One-time expenses have no frequency")
            if self.month is None or self.year is None:
                raise ValueError("One-time expenses need a month and year")

        if installments and self.installment_frequency is None:
            raise ValueError("Installments need an installment frequency")
        if not installments and (
            self.installment_frequency is not None or self.installment_count is not None
        ):
            raise ValueError("Installment settings require the installments strategy")
        if self.paid_by_user_id is not None and self.type != ExpenseType.shared:
            raise ValueError("Only shared expenses can have a payer")
        return self


class OverrideIn(BaseModel):
    amount_cents: int = Field(..., ge=0)
    skipped: bool = False


class UpcomingOverrideIn(OverrideIn):
    from_year: int = Field(..., ge=1970, le=3000)
    from_month: int = Field(..., ge=1, le=12)


class DefaultAmountIn(BaseModel):
    amount_cents: int = Field(..., ge=0)


class SkipIn(PeriodIn):
    scope: Literal["single", "upcoming"] = "single"


class SalaryIn(PeriodIn):
    default_amount_cents: int = Field(..., ge=0)
    current_amount_cents: int = Field(..., ge=0)


class SavingIn(PeriodIn):
    amount_cents: int = Field(..., ge=0)
    reduces_from_salary: bool = True


class ExpenseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    household_id: int
    created_by_id: int
    name: str
    amount_cents: int
    type: ExpenseType
    category: ExpenseCategory
    frequency: Optional[ExpenseFrequency]
    yearly_payment_strategy: Optional[YearlyPaymentStrategy]
    installment_frequency: Optional[InstallmentFrequency]
    installment_count: Optional[int]
    payment_month: Optional[int]
    month: Optional[int]
    year: Optional[int]
    paid_by_user_id: Optional[int]
    created_at: datetime
    updated_at: datetime


class OverrideOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    expense_id: int
    year: int
    month: int
    amount_cents: int
    skipped: bool


class PaymentStatusOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    expense_id: int
    year: int
    month: int
    status: PaymentStatus
    paid_by_id: Optional[int] = None
    paid_at: Optional[datetime] = None


class SettlementRecordOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    household_id: int
    year: int
    month: int
    amount_cents: int
    paid_by_user_id: int
    paid_to_user_id: int
    paid_at: datetime
