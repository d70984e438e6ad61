"""Main API router that includes all endpoint routers."""

from fastapi import APIRouter

from rentflow.api.v1 import bookings, deposits, disputes, ledger, payouts

api_router = APIRouter()

# Bookings
api_router.include_router(bookings.router, prefix="/bookings", tags=["Bookings"])

# Deposits
api_router.include_router(deposits.router, prefix="/deposits", tags=["Deposits"])

# Disputes
api_router.include_router(disputes.router, prefix="/disputes", tags=["Disputes"])

# Ledger
api_router.include_router(ledger.router, prefix="/ledger", tags=["Ledger"])

# Payouts
api_router.include_router(payouts.router, prefix="/payouts", tags=["Payouts"])
