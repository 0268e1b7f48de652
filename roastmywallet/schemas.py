# schemas.py

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# Expense Schemas
class Expense(CamelModel):
    id: int
    user_id: str
    amount: int
    description: str
    date: datetime
    category: str
    roast: str
    source: str
    image_url: Optional[str] = None


class UploadedExpense(Expense):
    ephemeral: bool = False
    uploads_used: int
    uploads_limit: Optional[int] = None


class UploadRequest(CamelModel):
    image: str = Field(min_length=1)
    tone: Optional[str] = None


class ManualExpenseCreate(CamelModel):
    amount: int = Field(gt=0)  # cents
    description: str = Field(min_length=1)
    category: str = Field(min_length=1)
    date: str
    source: Literal["manual", "bank_statement"] = "manual"
    tone: Optional[str] = None


class StatementImport(CamelModel):
    format: str = "csv"
    data: str = Field(min_length=1)
    tone: Optional[str] = None


class StatementImportResult(CamelModel):
    imported: int
    skipped: int
    expenses: List[Expense] = []


# Aggregate Schemas
class MonthlySummary(CamelModel):
    monthly_total: int
    recent_roasts: List[str] = []


class MonthlyPoint(CamelModel):
    month: str
    total: int
    count: int


class AdviceBreakdown(CamelModel):
    category: str
    amount: int
    insight: str
    alternatives: List[str] = []
    potential_saving: int


class FinancialAdvice(CamelModel):
    advice: str
    top_category: str
    savings_potential: int
    breakdown: List[AdviceBreakdown] = []


class CategoryAmount(CamelModel):
    category: str
    amount: int


class WorstMonth(CamelModel):
    month: str
    amount: int


class AnnualReport(CamelModel):
    total_spend: int
    transaction_count: int
    months_tracked: int
    avg_monthly_spend: int
    projection5yr: int = Field(alias="projection5yr")
    worst_month: Optional[WorstMonth] = None
    top5_categories: List[CategoryAmount] = Field(default=[], alias="top5Categories")
    roast: str
    behavioral_analysis: str
    improvements: List[str]


# User Schemas
class User(CamelModel):
    id: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    profile_image_url: Optional[str] = None
    tier: str
    has_annual_report: bool = False
    uploads_used: int = 0
    uploads_limit: Optional[int] = None
    created_at: Optional[datetime] = None
