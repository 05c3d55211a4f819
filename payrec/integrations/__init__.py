# payrec/integrations/__init__.py

from payrec.integrations import stripe
from payrec.integrations import excel
from payrec.integrations import issuer_client

__all__ = ["stripe", "excel", "issuer_client"]
