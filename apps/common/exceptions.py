from rest_framework.response import Response
from rest_framework.views import exception_handler

from apps.ledger.exceptions import LedgerError


def api_exception_handler(exc, context):
    if isinstance(exc, LedgerError):
        return Response(
            {"code": exc.code, "detail": exc.detail, "fields": exc.fields},
            status=exc.status_code,
        )

    response = exception_handler(exc, context)
    if response is None:
        return response

    if isinstance(response.data, dict):
        detail = response.data.get("detail", "La solicitud no es valida.")
        fields = {k: v for k, v in response.data.items() if k != "detail"}
    else:
        detail = "La solicitud no es valida."
        fields = {}

    response.data = {
        "code": getattr(exc, "default_code", "error"),
        "detail": detail,
        "fields": fields,
    }
    return response
