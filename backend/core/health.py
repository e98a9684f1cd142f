from django.db import connection
from django.http import JsonResponse
from django.utils import timezone


def healthz(request):
    """Liveness probe that also checks the database connection."""
    with connection.cursor() as cursor:
        cursor.execute("SELECT 1")
    return JsonResponse(
        {
            "success": True,
            "message": "API is healthy",
            "timestamp": timezone.now().isoformat(),
        }
    )
