"""API package.

Router modules live under ``expensor.api.routes``:
	from expensor.api.routes.receipts import router
"""

__all__ = [
	"routes",
]
