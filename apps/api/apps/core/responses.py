"""
Success envelope helpers.
"""
from rest_framework import status as http_status
from rest_framework.response import Response


def success_response(data=None, message=None, status=http_status.HTTP_200_OK, **extra):
    """Build ``{"success": true, "message": ..., "data": ...}``."""
    body = {'success': True}
    if message:
        body['message'] = message
    body['data'] = data
    body.update(extra)
    return Response(body, status=status)
