"""
Query functions behind `SqlQuerier`.

One module per aggregate; every function takes an `AsyncSession` and returns
ORM rows or raises `NoRowsError` / `UniqueViolationError`.
"""
