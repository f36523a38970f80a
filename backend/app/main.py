import os
import logging
from contextlib import asynccontextmanager
from decimal import Decimal
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from app.core.config import settings
from app.core.exceptions import CommissionEngineError
from app.api import commission_rules, penalties, settlements

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def seed_data(db):
    """Default scheme configuration rows and a starter rule set, only where missing."""
    from app.models.commission import CommissionRule, CommissionTier
    from app.models.penalty import PenaltyRule
    from app.models.scheme_config import SchemeConfigEntry

    defaults = {
        "scheme_start_date": settings.SCHEME_START_DATE,
        "penalty_trial_months": str(settings.PENALTY_TRIAL_MONTHS),
        "scheme_min_duration": str(settings.SCHEME_MIN_DURATION),
        "scheme_max_duration": str(settings.SCHEME_MAX_DURATION),
    }
    for key, value in defaults.items():
        if not db.query(SchemeConfigEntry).filter(SchemeConfigEntry.config_key == key).first():
            db.add(SchemeConfigEntry(config_key=key, config_value=value))
            logger.info(f"Scheme config {key}={value} seeded")

    if db.query(CommissionRule).count() == 0:
        db.add(CommissionRule(
            rule_name="Contract commission",
            rule_type="percentage",
            apply_to="contract",
            commission_base="contract_amount",
            commission_rate=Decimal("2"),
            is_stackable=False,
            priority=10,
            notes="2% of contract amount",
        ))
        db.add(CommissionRule(
            rule_name="Monthly order volume bonus",
            rule_type="tiered",
            apply_to="order",
            is_stackable=True,
            priority=5,
            tiers=[
                CommissionTier(tier_level=1, min_count=1, max_count=10,
                               supervisor_bonus=Decimal("20"), sales_bonus=Decimal("50"), document_bonus=Decimal("10")),
                CommissionTier(tier_level=2, min_count=11, max_count=30,
                               supervisor_bonus=Decimal("30"), sales_bonus=Decimal("80"), document_bonus=Decimal("15")),
                CommissionTier(tier_level=3, min_count=31, max_count=None,
                               supervisor_bonus=Decimal("40"), sales_bonus=Decimal("120"), document_bonus=Decimal("20")),
            ],
        ))
        logger.info("Sample commission rules seeded")

    if db.query(PenaltyRule).count() == 0:
        db.add(PenaltyRule(
            penalty_name="Failed inspection",
            penalty_type="inspection",
            supervisor_penalty=Decimal("50"),
            sales_penalty=Decimal("100"),
            document_penalty=Decimal("50"),
            total_amount=Decimal("200"),
        ))
        db.add(PenaltyRule(
            penalty_name="Cargo loss",
            penalty_type="loss",
            loss_percentage=Decimal("10"),
            max_penalty_rate=Decimal("50"),
        ))
        logger.info("Sample penalty rules seeded")

    db.commit()


def init_database():
    """Create tables and seed defaults on startup."""
    from app.core.database import engine, Base, SessionLocal
    from app import models  # noqa: F401  register all tables

    logger.info("Creating database tables...")
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        seed_data(db)
        logger.info("Database seeded successfully")
    except Exception as e:
        logger.error(f"Error seeding data: {e}")
        db.rollback()
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Run database init on startup."""
    init_database()
    yield


# Disable API docs in production
docs_url = "/docs" if settings.ENVIRONMENT != "production" else None
redoc_url = "/redoc" if settings.ENVIRONMENT != "production" else None

app = FastAPI(
    title=settings.APP_NAME,
    description="Freight CRM - Commission & Penalty Settlement API",
    version="1.0.0",
    lifespan=lifespan,
    docs_url=docs_url,
    redoc_url=redoc_url,
)


@app.exception_handler(CommissionEngineError)
async def commission_error_handler(request: Request, exc: CommissionEngineError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Global exception handler - always return JSON (never plain text)
@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    import traceback
    logger.error("Unhandled exception: %s\n%s", exc, traceback.format_exc())
    return JSONResponse(
        status_code=500,
        content={"detail": f"Internal error: {str(exc)}"},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request, exc):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=getattr(exc, "headers", None),
    )


allowed_origins = ["http://localhost:3000", "http://localhost:5173"]
frontend_url = os.environ.get("FRONTEND_URL", "")
if frontend_url and frontend_url not in allowed_origins:
    allowed_origins.append(frontend_url)

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
def health_check():
    return {"status": "healthy", "service": "commission-engine", "version": "1.0.0"}


@app.get("/")
def root():
    return {"message": settings.APP_NAME, "version": "1.0.0", "docs": "/docs"}


# Include routers
app.include_router(commission_rules.router)
app.include_router(penalties.router)
app.include_router(settlements.router)
