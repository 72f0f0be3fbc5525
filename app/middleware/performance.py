from time import perf_counter

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from app.observability.perf_metrics import api_metric_key, perf_metrics

MONITORED_PATH_PREFIXES = ("/v2/",)
# Long-lived event streams would only skew the latency summary.
UNMONITORED_PATHS = {"/v2/credentials/stream"}


def _is_monitored_path(path: str) -> bool:
    return path not in UNMONITORED_PATHS and any(
        path.startswith(prefix) for prefix in MONITORED_PATH_PREFIXES
    )


class ApiPerformanceMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if not _is_monitored_path(path):
            return await call_next(request)

        start = perf_counter()
        response: Response = await call_next(request)
        latency_ms = (perf_counter() - start) * 1000

        metric_key = api_metric_key(request.method, path)

        perf_metrics.record_api(metric_key, latency_ms)
        response.headers["x-api-latency-ms"] = f"{latency_ms:.2f}"

        summary = perf_metrics.get_api_summary(metric_key)
        if summary:
            response.headers["x-api-latency-p95-ms"] = f"{summary['p95_ms']:.2f}"
            response.headers["x-api-sample-count"] = str(summary["count"])

        return response
