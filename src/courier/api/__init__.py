"""FastAPI admin API for Courier.

Exposes subscription management, event publishing and delivery history.

Example:
    ```python
    from courier.api import create_app

    app = create_app()
    ```
"""

from .app import create_app
from .router import router

__all__ = ["create_app", "router"]
