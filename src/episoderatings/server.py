import json
from typing import Optional

from aiohttp import web
from loguru import logger

from episoderatings.lib.config import EpisodeRatingsConfig, ConfigurationRequiredError
from episoderatings.lib.enrich import EnrichmentService, NotFoundError, UpstreamError
from episoderatings.lib.manifest import build_manifest

service_key = web.AppKey("service", EnrichmentService)

CONFIGURE_PAGE = """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>IMDb Episode Ratings</title></head>
<body>
<h1>IMDb Episode Ratings</h1>
<form id="config">
  <label>TMDB API key <input name="tmdbKey" required></label><br>
  <label>OMDb API key <input name="omdbKey" required></label><br>
  <button type="submit">Install</button>
</form>
<script>
document.getElementById("config").addEventListener("submit", function (event) {
  event.preventDefault();
  var data = new FormData(event.target);
  var config = encodeURIComponent(JSON.stringify({
    tmdbKey: data.get("tmdbKey"), omdbKey: data.get("omdbKey")
  }));
  window.location.href = "stremio://" + window.location.host + "/" + config + "/manifest.json";
});
</script>
</body>
</html>
"""


class InvalidUserConfig(ValueError):
    pass


def parse_user_config(segment: Optional[str]) -> Optional[dict]:
    """The host passes per-user settings as a URL-encoded JSON object path segment,
    aiohttp has already percent-decoded it."""
    if not segment:
        return None
    try:
        data = json.loads(segment)
    except ValueError:
        raise InvalidUserConfig("Malformed addon configuration.")
    if not isinstance(data, dict):
        raise InvalidUserConfig("Malformed addon configuration.")
    return data


def error_response(message: str, status: int) -> web.Response:
    return web.json_response({"err": message}, status=status)


async def manifest_handler(request: web.Request) -> web.Response:
    service = request.app[service_key]
    return web.json_response(build_manifest(service.config).model_dump(by_alias=True))


async def configure_handler(request: web.Request) -> web.Response:
    return web.Response(text=CONFIGURE_PAGE, content_type="text/html")


async def meta_handler(request: web.Request) -> web.Response:
    service = request.app[service_key]
    request_type = request.match_info["type"]
    external_id = request.match_info["id"]

    try:
        supplied = parse_user_config(request.match_info.get("config"))
        record = await service.handle_meta_request(request_type, external_id, supplied)
    except (InvalidUserConfig, ConfigurationRequiredError) as e:
        return error_response(str(e), 400)
    except UpstreamError as e:
        status = 404 if isinstance(e.__cause__, NotFoundError) else 502
        return error_response(str(e), status)

    return web.json_response({"meta": record.to_host() if record else None})


@web.middleware
async def cors_middleware(request: web.Request, handler):
    response = await handler(request)
    response.headers["Access-Control-Allow-Origin"] = "*"
    response.headers["Access-Control-Allow-Headers"] = "*"
    return response


async def _close_service(app: web.Application):
    logger.debug("Closing provider sessions.")
    await app[service_key].close()


def create_app(config: EpisodeRatingsConfig, service: Optional[EnrichmentService] = None) -> web.Application:
    app = web.Application(middlewares=[cors_middleware])
    app[service_key] = service or EnrichmentService(config)
    app.on_cleanup.append(_close_service)

    app.router.add_get("/manifest.json", manifest_handler)
    app.router.add_get("/configure", configure_handler)
    app.router.add_get("/meta/{type}/{id}.json", meta_handler)
    app.router.add_get("/{config:[^/]+}/manifest.json", manifest_handler)
    app.router.add_get("/{config:[^/]+}/configure", configure_handler)
    app.router.add_get("/{config:[^/]+}/meta/{type}/{id}.json", meta_handler)
    return app


def run(config: EpisodeRatingsConfig, host: Optional[str] = None, port: Optional[int] = None):
    host = host or config.server.host
    port = port or config.server.port
    logger.info(f"Serving add-on at http://{host}:{port}/manifest.json")
    web.run_app(create_app(config), host=host, port=port, print=None)
