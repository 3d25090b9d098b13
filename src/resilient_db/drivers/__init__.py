"""
Concrete driver adapters.

Each module imports its driver library eagerly, so import only the adapters
a deployment actually uses (``resilient_db.driver.get_driver`` does this).
"""
