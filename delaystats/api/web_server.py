"""
Web front end of the predictor.
Exposes the query interface over HTTP as JSON.
"""

import asyncio
import logging
import math
import sys
from datetime import datetime
from typing import Optional

import pytz
from aiohttp import web

from ..core.config import ApplicationConfig
from ..core.errors import DelayStatsError, NoDataAvailable, RouteNotFound, StopNotOnRoute
from ..data.models.keys import EventType
from ..data.models.prediction import PredictionQuery
from ..data.sources.schedule import StaticSchedule
from ..predictor.predictor import Predictor

logger = logging.getLogger(__name__)

TRUE_VALUES = ("1", "true", "yes", "on")


class PredictionServer:
    """Serves delay predictions of one Predictor"""
    CORS_OPTIONS = {
        'Access-Control-Allow-Origin': '*',
        'Access-Control-Allow-Methods': 'GET, OPTIONS',
        'Access-Control-Allow-Headers': '*',
        'Access-Control-Max-Age': '3600',
    }

    def __init__(self, config: ApplicationConfig, predictor: Predictor):
        self.config = config
        self.predictor = predictor
        self.local_tz = pytz.timezone(config.timezone)

        self.app: Optional[web.Application] = None
        self.runner: Optional[web.AppRunner] = None
        self.site: Optional[web.TCPSite] = None

    async def create_app(self) -> web.Application:
        """Create and configure the web application"""
        app = web.Application()
        app.router.add_get('/predict', self._handle_predict)
        app.router.add_get('/health', self._handle_health)
        app.router.add_route('OPTIONS', '/{tail:.*}', self._handle_options)
        return app

    def parse_query(self, params) -> PredictionQuery:
        """PredictionQuery from request parameters; raises ValueError on bad input"""
        missing = [name for name in ("route_id", "trip_id", "stop_id") if not params.get(name)]
        if missing:
            raise ValueError(f"Missing parameters: {', '.join(missing)}")

        raw_time = params.get("date_time")
        if raw_time:
            date_time = datetime.fromisoformat(raw_time)
        else:
            date_time = datetime.now(self.local_tz)
        if date_time.tzinfo is None:
            date_time = self.local_tz.localize(date_time)

        initial_delay = params.get("initial_delay")
        if initial_delay not in (None, ""):
            initial_delay = float(initial_delay)
            if not math.isfinite(initial_delay):
                raise ValueError(f"initial_delay must be a finite number of seconds, got {initial_delay}")
        else:
            initial_delay = None

        return PredictionQuery(
            route_id=params["route_id"],
            trip_id=params["trip_id"],
            stop_id=params["stop_id"],
            event_type=EventType.parse(params.get("event_type", "arrival")),
            date_time=date_time,
            start_stop_id=params.get("start_stop_id") or None,
            initial_delay=initial_delay,
            use_realtime=params.get("use_realtime", "").lower() in TRUE_VALUES
        )

    async def _handle_predict(self, request: web.Request) -> web.Response:
        """GET /predict - Delay distribution for one stop of a trip"""
        try:
            query = self.parse_query(request.query)
        except ValueError as e:
            return web.json_response({"error": str(e)}, status=400, headers=self.CORS_OPTIONS)

        loop = asyncio.get_running_loop()
        try:
            # tree loads are blocking file reads
            result = await loop.run_in_executor(None, self.predictor.predict, query)
        except (RouteNotFound, StopNotOnRoute, NoDataAvailable) as e:
            return web.json_response({"error": str(e), "type": type(e).__name__},
                                     status=404, headers=self.CORS_OPTIONS)
        except DelayStatsError as e:
            logger.error(f"Prediction failed for {query}: {e}")
            return web.json_response({"error": str(e), "type": type(e).__name__},
                                     status=500, headers=self.CORS_OPTIONS)

        response = web.json_response(result.to_dict(), headers=self.CORS_OPTIONS)
        response.headers["Cache-Control"] = "no-store"
        return response

    async def _handle_health(self, request: web.Request) -> web.Response:
        """GET /health - Liveness check"""
        return web.json_response({"status": "ok", "data_dir": str(self.predictor.data_dir)},
                                 headers=self.CORS_OPTIONS)

    async def _handle_options(self, request: web.Request) -> web.Response:
        """Handle OPTIONS preflight requests"""
        return web.Response(headers=self.CORS_OPTIONS)

    async def start(self, host: Optional[str] = None, port: Optional[int] = None) -> None:
        """Start the web server"""
        host = host or self.config.web_host
        port = port or self.config.web_port
        logger.info(f"Starting web server on {host}:{port}")

        self.app = await self.create_app()
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()

        self.site = web.TCPSite(self.runner, host, port)
        await self.site.start()

        logger.info(f"Web server started on {host}:{port}")

    async def stop(self) -> None:
        """Stop the web server gracefully"""
        logger.info("Stopping web server...")
        if self.site:
            await self.site.stop()
        if self.runner:
            await self.runner.cleanup()
        logger.info("Web server stopped")


async def serve(config: ApplicationConfig) -> None:
    schedule = StaticSchedule.from_json(config.schedule_path)
    predictor = Predictor(schedule, config)
    server = PredictionServer(config, predictor)
    await server.start()
    try:
        await asyncio.Event().wait()
    finally:
        await server.stop()


def main():
    """Run the prediction front end until interrupted"""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    config = ApplicationConfig.from_env()
    try:
        asyncio.run(serve(config))
    except KeyboardInterrupt:
        print("\nShutdown complete")
        sys.exit(0)


if __name__ == "__main__":
    main()
