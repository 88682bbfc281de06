"""Top-level package for the Expensor backend.

Expensor is the API behind a Telegram Mini App for tracking receipts.
The package holds the database models, Pydantic schemas, the service
layer (receipt query engine, receipt CRUD, categories, users, tokens and
Stripe checkout, dashboard) and the FastAPI routers that expose them.

To run the API locally:

```bash
DB_DEV_FALLBACK_SQLITE=true uvicorn expensor.api.main:app --reload --app-dir backend
```

Configuration is read from the environment or a ``.env`` file at the
project root; see ``expensor.core.config``.
"""

__all__: list[str] = []
