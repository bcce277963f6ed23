"""
competition_engine/routes/__init__.py
Route registration
"""
from fastapi import APIRouter
from competition_engine.routes import competitions, admin

router = APIRouter()

router.include_router(competitions.router)
router.include_router(admin.router)
