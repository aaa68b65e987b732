"""FastAPI application entry point."""

import structlog
from fastapi import FastAPI

from ticketflow.config import settings
from ticketflow.api import automation, health, mail

# Configure structured logging
structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.ConsoleRenderer() if settings.debug else structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(0),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
)

app = FastAPI(
    title=settings.app_name,
    description="Ticket lifecycle automation: SLA breaches, escalations, auto-close and inbound mail",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

# Mount routers
app.include_router(health.router, prefix=settings.api_prefix)
app.include_router(automation.router, prefix=settings.api_prefix)
app.include_router(mail.router, prefix=settings.api_prefix)


@app.get("/")
async def root():
    return {
        "name": settings.app_name,
        "version": "1.0.0",
        "docs": "/docs",
    }
