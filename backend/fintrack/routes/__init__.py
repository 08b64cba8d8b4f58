from fastapi import APIRouter
from fintrack.routes import accounts, transactions, sync, loans, goals, subscriptions, budgets

api_router = APIRouter()

api_router.include_router(accounts.router, prefix="/accounts", tags=["accounts"])
api_router.include_router(transactions.router, prefix="/transactions", tags=["transactions"])
api_router.include_router(sync.router, prefix="/sync", tags=["sync"])
api_router.include_router(loans.router, prefix="/loans", tags=["loans"])
api_router.include_router(goals.router, prefix="/goals", tags=["goals"])
api_router.include_router(subscriptions.router, prefix="/subscriptions", tags=["subscriptions"])
api_router.include_router(budgets.router, prefix="/budgets", tags=["budgets"])
