"""
App-wide error handlers.

Domain exceptions raised anywhere below a view become the standard
envelope (see ``resourcing.utils.errors``).  The session is rolled back
first so a half-applied transition never leaks into the next request.
Unexpected exceptions are logged and reported as ERR_INTERNAL.
"""

import logging

from werkzeug.exceptions import HTTPException

from resourcing.core.exceptions import ResourcingError
from resourcing.models import db
from resourcing.utils.errors import E, api_error, error_for

logger = logging.getLogger(__name__)


def register_error_handlers(app):

    @app.errorhandler(ResourcingError)
    def _handle_domain_error(error: ResourcingError):
        db.session.rollback()
        logger.info("Request refused: %s", error, extra={"error_type": type(error).__name__})
        return error_for(error)

    @app.errorhandler(HTTPException)
    def _handle_http(error: HTTPException):
        return {"error": error.description or error.name}, error.code

    @app.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        db.session.rollback()
        logger.exception("Unhandled error: %s", error)
        return api_error(E.INTERNAL, "Internal server error")
