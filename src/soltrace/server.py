"""
soltrace HTTP service.

Exposes the debug pipeline over HTTP:

- POST /v1/debug-transaction     full debugger payload
- POST /v1/simulate-transaction  call maps only
- GET|POST /v1/cleanup           sweep the scratch space now
- GET /health

The scratch sweeper runs for the lifetime of the application.
"""

import json
from typing import Any, Dict, Optional

from aiohttp import web

from soltrace import __version__
from soltrace.config import TraceConfig
from soltrace.core.pipeline import DebugPipeline, DebugRequest
from soltrace.core.serializer import to_serializable
from soltrace.scratch import ScratchSpace, ScratchSweeper
from soltrace.utils.exceptions import (
    InvalidRequestError,
    SoltraceError,
    format_exception_message,
    sanitize_error_message,
)
from soltrace.utils.logging import get_logger

logger = get_logger('server')

PIPELINE_KEY = web.AppKey('pipeline', DebugPipeline)
SWEEPER_KEY = web.AppKey('sweeper', ScratchSweeper)

ENDPOINTS = [
    "GET /health",
    "POST /v1/debug-transaction",
    "POST /v1/simulate-transaction",
    "GET /v1/cleanup",
    "POST /v1/cleanup",
]


def error_response(code: str, message: str, status: int, detail: Optional[str] = None) -> web.Response:
    body: Dict[str, Any] = {'error': code, 'message': sanitize_error_message(message)}
    if detail and detail != message:
        body['detail'] = sanitize_error_message(detail)
    return web.json_response(body, status=status)


@web.middleware
async def error_middleware(request: web.Request, handler):
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except SoltraceError as e:
        logger.warning(f"{request.method} {request.path} -> {e.status_code} {e.error_code}: "
                       f"{sanitize_error_message(e.message)}")
        return error_response(e.error_code, e.user_message, e.status_code, e.message)
    except Exception as e:
        logger.error(f"{request.method} {request.path} failed: "
                     f"{sanitize_error_message(format_exception_message(e))}")
        return error_response('INTERNAL_ERROR', 'An unexpected error occurred', 500)


async def _cors_headers(request: web.Request, response: web.StreamResponse) -> None:
    response.headers['Access-Control-Allow-Origin'] = '*'


async def read_json_body(request: web.Request) -> Dict[str, Any]:
    if not request.can_read_body:
        return {}
    try:
        body = await request.json()
    except json.JSONDecodeError as e:
        raise InvalidRequestError(f"Invalid JSON body: {e.msg}") from e
    if not isinstance(body, dict):
        raise InvalidRequestError("Request body must be a JSON object")
    return body


async def handle_info(request: web.Request) -> web.Response:
    return web.json_response({'name': 'soltrace', 'version': __version__, 'endpoints': ENDPOINTS})


async def handle_health(request: web.Request) -> web.Response:
    sweeper = request.app[SWEEPER_KEY]
    return web.json_response({
        'status': 'healthy',
        'version': __version__,
        'sweeperRunning': sweeper.running,
    })


async def handle_debug_transaction(request: web.Request) -> web.Response:
    debug_request = DebugRequest.from_dict(await read_json_body(request))
    result = await request.app[PIPELINE_KEY].run(debug_request)
    return web.json_response(to_serializable(result.to_dict()))


async def handle_simulate_transaction(request: web.Request) -> web.Response:
    debug_request = DebugRequest.from_dict(await read_json_body(request))
    result = await request.app[PIPELINE_KEY].simulate(debug_request)
    return web.json_response(to_serializable(result.to_dict()))


async def handle_cleanup(request: web.Request) -> web.Response:
    raw_age = request.query.get('maxAge')
    if request.method == 'POST' and raw_age is None:
        raw_age = (await read_json_body(request)).get('maxAge')
    try:
        max_age = float(raw_age) if raw_age is not None else None
    except (TypeError, ValueError) as e:
        raise InvalidRequestError(f"maxAge must be a number of seconds, got {raw_age!r}") from e

    removed = await request.app[SWEEPER_KEY].sweep_now(max_age)
    return web.json_response({'removed': len(removed), 'directories': [p.name for p in removed]})


async def _check_compiler(app: web.Application) -> None:
    report = await app[PIPELINE_KEY].compiler.verify_solc_version()
    if report['supported']:
        logger.info(f"Using solc {report['version']}")
    else:
        logger.warning(f"Compiler check: {report['error']}")


async def _start_sweeper(app: web.Application) -> None:
    app[SWEEPER_KEY].start()


async def _stop_sweeper(app: web.Application) -> None:
    await app[SWEEPER_KEY].stop()


def create_app(
    config: TraceConfig,
    pipeline: Optional[DebugPipeline] = None,
    sweeper: Optional[ScratchSweeper] = None,
) -> web.Application:
    """
    Build the aiohttp application.

    Args:
        config: Runtime configuration
        pipeline: Pipeline to serve (built from ``config`` when omitted)
        sweeper: Scratch sweeper (built from ``config`` when omitted)
    """
    scratch = pipeline.scratch if pipeline else ScratchSpace(config.scratch_root)
    app = web.Application(middlewares=[error_middleware])
    app[PIPELINE_KEY] = pipeline or DebugPipeline(config, scratch=scratch)
    app[SWEEPER_KEY] = sweeper or ScratchSweeper(scratch, config.sweep_interval, config.sweep_max_age)

    app.router.add_get('/', handle_info)
    app.router.add_get('/health', handle_health)
    app.router.add_post('/v1/debug-transaction', handle_debug_transaction)
    app.router.add_post('/v1/simulate-transaction', handle_simulate_transaction)
    app.router.add_get('/v1/cleanup', handle_cleanup)
    app.router.add_post('/v1/cleanup', handle_cleanup)

    app.on_response_prepare.append(_cors_headers)
    app.on_startup.append(_check_compiler)
    app.on_startup.append(_start_sweeper)
    app.on_cleanup.append(_stop_sweeper)
    return app


def run_server(config: TraceConfig, host: str = '127.0.0.1', port: int = 8080) -> None:
    """Serve until interrupted."""
    logger.info(f"soltrace listening on http://{host}:{port}")
    web.run_app(create_app(config), host=host, port=port, print=None)
