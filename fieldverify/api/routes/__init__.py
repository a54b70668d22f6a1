"""API routes package — import all routers here for inclusion in the app."""

from fieldverify.api.routes.cases import router as cases_router  # noqa: F401
from fieldverify.api.routes.review import router as review_router  # noqa: F401
from fieldverify.api.routes.reverted import router as reverted_router  # noqa: F401
from fieldverify.api.routes.ingest import router as ingest_router  # noqa: F401
from fieldverify.api.routes.members import router as members_router  # noqa: F401
from fieldverify.api.routes.jobs import router as jobs_router  # noqa: F401
from fieldverify.api.routes.mail import router as mail_router  # noqa: F401
