"""
models/__init__.py — imports all ORM models so Alembic's env.py
sees them via Base.metadata when generating migrations.
"""
from taxcore.models.tax_calculation import TaxCalculationORM

__all__ = ["TaxCalculationORM"]
