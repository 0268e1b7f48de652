# main.py

import logging
import time
from typing import List

from fastapi import Depends, FastAPI, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from . import crud, models, schemas
from .auth import get_current_user
from .config import settings
from .database import engine, get_db
from .errors import RoastMyWalletError, UpstreamError, ValidationFailed
from .ingestion import run_ingestion
from .services import aggregator, annual_report, billing, normalizer, quota, roast_service
from .utils import parse_date

logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s %(message)s")
logger = logging.getLogger("roastmywallet.main")

LOGGED_BODY_LIMIT = 500

models.Base.metadata.create_all(bind=engine)

app = FastAPI(title="RoastMyWallet API", version="1.0.0")


# ---------------------- Error handling ----------------------
@app.exception_handler(RoastMyWalletError)
async def handle_app_error(request: Request, exc: RoastMyWalletError):
    if isinstance(exc, UpstreamError):
        logger.warning(f"{request.method} {request.url.path} upstream failure: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def handle_request_validation(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    loc = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path", "header")]
    content = {"message": first.get("msg", "Invalid request")}
    if loc:
        content["field"] = ".".join(loc)
    return JSONResponse(status_code=400, content=content)


@app.exception_handler(Exception)
async def handle_unexpected(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"message": "Internal Server Error"})


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    if not request.url.path.startswith("/api"):
        return response

    duration = int((time.time() - start) * 1000)
    log_line = f"{request.method} {request.url.path} {response.status_code} in {duration}ms"
    if response.headers.get("content-type", "").startswith("application/json"):
        body = b""
        async for chunk in response.body_iterator:
            body += chunk
        text = body.decode("utf-8", errors="replace")
        if text and len(text) < LOGGED_BODY_LIMIT:
            log_line += f" :: {text}"
        # the iterator is spent, so hand back a rebuilt response
        response = Response(
            content=body,
            status_code=response.status_code,
            headers=dict(response.headers),
            media_type=response.media_type,
        )
    logger.info(log_line)
    return response


# ---------------------- Helpers ----------------------
def visible_expenses(db: Session, user: models.User) -> List[models.Expense]:
    """Free-tier reads see nothing; their uploads are never stored."""
    if user.tier != models.TIER_PREMIUM:
        return []
    return crud.list_expenses(db, user.id)


# ---------------------- Routes ----------------------
@app.get("/")
def read_root():
    return {"message": "Welcome to the RoastMyWallet API"}


@app.get("/api/health")
def health():
    return {"status": "ok"}


@app.get("/api/me", response_model=schemas.User)
def read_me(user: models.User = Depends(get_current_user)):
    return schemas.User(
        id=user.id,
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        profile_image_url=user.profile_image_url,
        tier=user.tier,
        has_annual_report=bool(user.has_annual_report),
        uploads_used=quota.uploads_used(user),
        uploads_limit=quota.upload_limit(user),
        created_at=user.created_at,
    )


@app.get("/api/expenses", response_model=List[schemas.Expense])
def list_expenses(user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    return visible_expenses(db, user)


@app.get("/api/expenses/summary", response_model=schemas.MonthlySummary)
def expense_summary(user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    return aggregator.monthly_summary(visible_expenses(db, user))


@app.get("/api/expenses/monthly-series", response_model=List[schemas.MonthlyPoint])
def monthly_series(user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    return aggregator.monthly_series(visible_expenses(db, user))


@app.get("/api/expenses/financial-advice", response_model=schemas.FinancialAdvice)
def financial_advice(user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    quota.require_premium(user, "Financial advice")
    return aggregator.financial_advice(crud.list_expenses(db, user.id))


@app.post("/api/expenses/upload", status_code=201, response_model=schemas.UploadedExpense)
def upload_receipt(payload: schemas.UploadRequest, user: models.User = Depends(get_current_user),
                   db: Session = Depends(get_db)):
    tone = roast_service.resolve_tone(user, payload.tone)
    normalizer.as_image_url(payload.image)
    decision = quota.admit_upload(db, user)
    extracted = normalizer.extract_receipt(payload.image, tone)

    if decision.persist:
        expense = crud.create_expense(
            db,
            user_id=user.id,
            amount=extracted.amount_cents,
            description=extracted.description,
            date=extracted.date,
            category=extracted.category,
            roast=extracted.roast,
            source=models.SOURCE_RECEIPT,
        )
        body = schemas.Expense.model_validate(expense).model_dump()
        ephemeral = False
    else:
        body = dict(
            id=models.EPHEMERAL_ID,
            user_id=user.id,
            amount=extracted.amount_cents,
            description=extracted.description,
            date=extracted.date,
            category=extracted.category,
            roast=extracted.roast,
            source=models.SOURCE_RECEIPT,
            image_url=None,
        )
        ephemeral = True

    logger.info(f"Roasted receipt for user {user.id} ({decision.used} uploads this month, ephemeral={ephemeral})")
    return schemas.UploadedExpense(
        **body,
        ephemeral=ephemeral,
        uploads_used=decision.used,
        uploads_limit=decision.limit,
    )


@app.post("/api/expenses/manual", status_code=201, response_model=schemas.Expense)
def add_manual_expense(payload: schemas.ManualExpenseCreate, user: models.User = Depends(get_current_user),
                       db: Session = Depends(get_db)):
    quota.require_premium(user, "Manual entry")
    date = parse_date(payload.date)
    if date is None:
        raise ValidationFailed("Invalid date", field="date")
    description = payload.description.strip()
    if not description:
        raise ValidationFailed("Description is required", field="description")

    category = normalizer.coerce_category(payload.category)
    tone = roast_service.resolve_tone(user, payload.tone)
    return crud.create_expense(
        db,
        user_id=user.id,
        amount=payload.amount,
        description=description,
        date=date,
        category=category,
        roast=roast_service.generate_roast(description, payload.amount, category, tone),
        source=payload.source,
    )


@app.post("/api/expenses/import-csv", status_code=201, response_model=schemas.StatementImportResult)
def import_statement(payload: schemas.StatementImport, user: models.User = Depends(get_current_user),
                     db: Session = Depends(get_db)):
    quota.require_premium(user, "Statement import")
    tone = roast_service.resolve_tone(user, payload.tone)
    normalized = normalizer.normalize_statement(payload.format, payload.data)
    created = run_ingestion(db, user.id, normalized.transactions, tone=tone)
    logger.info(f"Imported {len(created)} transactions for user {user.id} (skipped {normalized.skipped})")
    return schemas.StatementImportResult(
        imported=len(created),
        skipped=normalized.skipped,
        expenses=[schemas.Expense.model_validate(expense) for expense in created],
    )


@app.post("/api/expenses/annual-report", response_model=schemas.AnnualReport)
def generate_annual_report(user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    quota.require_annual_report(user)
    return annual_report.generate_report(crud.list_expenses(db, user.id))


@app.delete("/api/expenses/{expense_id}", status_code=204)
def delete_expense(expense_id: int, user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    if not crud.delete_expense(db, user.id, expense_id):
        logger.debug(f"Delete of expense {expense_id} by user {user.id} matched nothing")
    return Response(status_code=204)


@app.post("/api/billing/webhook")
async def billing_webhook(request: Request, db: Session = Depends(get_db)):
    payload = await request.body()
    updated = await run_in_threadpool(billing.handle_webhook, db, payload, request.headers.get("stripe-signature"))
    return {"received": True, "updated": updated}
