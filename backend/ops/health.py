"""
Health check endpoints for operations monitoring.

Endpoints:
- /_health/live    - liveness probe (is the process running?)
- /_health/ready   - readiness probe (can we reach the default database?)
- /_health/full    - full report: databases, Redis broker, tenant data
"""
import logging
import time
from typing import Any, Dict

import redis
from django.conf import settings
from django.db import DatabaseError, connections
from django.http import JsonResponse
from django.views import View

logger = logging.getLogger(__name__)


def _elapsed_ms(start: float) -> float:
    return round((time.time() - start) * 1000, 2)


class HealthCheck:
    """Health check implementation."""

    @staticmethod
    def check_database(alias: str = "default") -> Dict[str, Any]:
        start = time.time()
        try:
            conn = connections[alias]
            conn.ensure_connection()
            with conn.cursor() as cursor:
                cursor.execute("SELECT 1")
                cursor.fetchone()
        except DatabaseError as e:
            logger.warning("Database health check failed", extra={"alias": alias, "error": str(e)})
            return {
                "status": "unhealthy",
                "alias": alias,
                "error": str(e),
                "duration_ms": _elapsed_ms(start),
            }
        return {"status": "healthy", "alias": alias, "duration_ms": _elapsed_ms(start)}

    @staticmethod
    def check_all_databases() -> Dict[str, Any]:
        results = {alias: HealthCheck.check_database(alias) for alias in settings.DATABASES}
        all_healthy = all(r["status"] == "healthy" for r in results.values())
        return {
            "status": "healthy" if all_healthy else "degraded",
            "databases": results,
        }

    @staticmethod
    def check_redis() -> Dict[str, Any]:
        """Ping the Celery broker when it is Redis."""
        broker_url = getattr(settings, "CELERY_BROKER_URL", None)
        if not broker_url or not broker_url.startswith(("redis://", "rediss://")):
            return {"status": "skipped", "reason": "Redis broker not configured"}

        start = time.time()
        try:
            redis.from_url(broker_url, socket_connect_timeout=2).ping()
        except redis.RedisError as e:
            return {"status": "unhealthy", "error": str(e), "duration_ms": _elapsed_ms(start)}
        return {"status": "healthy", "duration_ms": _elapsed_ms(start)}

    @staticmethod
    def check_tenant_data() -> Dict[str, Any]:
        """Every organization must have at least one admin profile."""
        from accounts.models import Organization, Profile
        from accounts.rls import rls_bypass

        try:
            with rls_bypass():
                organizations = Organization.objects.count()
                without_admin = Organization.objects.exclude(
                    profiles__role=Profile.Role.ADMIN,
                ).count()
        except DatabaseError as e:
            return {"status": "error", "error": str(e)}

        result = {
            "status": "healthy" if without_admin == 0 else "degraded",
            "organizations": organizations,
        }
        if without_admin:
            result["organizations_without_admin"] = without_admin
        return result

    @staticmethod
    def get_full_health() -> Dict[str, Any]:
        checks = {
            "databases": HealthCheck.check_all_databases(),
            "redis": HealthCheck.check_redis(),
            "tenant_data": HealthCheck.check_tenant_data(),
        }

        statuses = [c.get("status", "unknown") for c in checks.values()]
        if all(s in ("healthy", "skipped") for s in statuses):
            overall = "healthy"
        elif any(s == "unhealthy" for s in statuses):
            overall = "unhealthy"
        else:
            overall = "degraded"

        return {
            "status": overall,
            "checks": checks,
            "version": getattr(settings, "VERSION", "unknown"),
            "environment": "development" if settings.DEBUG else "production",
        }


class LivenessView(View):
    """Returns 200 while the process is running. Touches nothing external."""

    def get(self, request):
        return JsonResponse({"status": "alive"})


class ReadinessView(View):
    def get(self, request):
        db_check = HealthCheck.check_database("default")
        if db_check["status"] == "healthy":
            return JsonResponse({"status": "ready", "database": db_check})
        return JsonResponse({"status": "not_ready", "database": db_check}, status=503)


class FullHealthView(View):
    """
    Full health report for debugging and dashboards.

    Should be protected in production (internal network only).
    """

    def get(self, request):
        health = HealthCheck.get_full_health()
        status_code = 200 if health["status"] == "healthy" else 503
        return JsonResponse(health, status=status_code)
