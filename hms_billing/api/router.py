# hms_billing/api/router.py
from fastapi import APIRouter

from hms_billing.api import routes_billing

api_router = APIRouter()

api_router.include_router(routes_billing.router)
