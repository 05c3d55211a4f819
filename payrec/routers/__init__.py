# payrec/routers/__init__.py

from payrec.routers import health
from payrec.routers import imports
from payrec.routers import reconciliation
from payrec.routers import duplicate_cases
from payrec.routers import webhooks
from payrec.routers import issuer

__all__ = ["health", "imports", "reconciliation", "duplicate_cases", "webhooks", "issuer"]
