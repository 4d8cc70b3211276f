"""The web front end: pages, debug views, static files, health and metrics."""

from __future__ import annotations

import base64
import dataclasses
import json
import logging
import mimetypes
import os
import re
import signal
import threading
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import jinja2
from google.protobuf import json_format
from google.protobuf.message import Message
from werkzeug.serving import make_server
from werkzeug.wrappers import Request, Response

from sloop.keys import EventCountKey, KeyParseError, ResourceSummaryKey, WatchActivityKey, WatchTableKey
from sloop.kvstore import StoreError
from sloop.links import (
    LinkTemplate,
    ResourceLinkTemplate,
    TemplateError,
    make_left_bar_links,
    make_resource_links,
)
from sloop.params import (
    ParamError,
    TimeUnit,
    clean_string_from_param,
    number_from_param,
    time_from_unix_time_param,
)
from sloop.storemanager import metrics as store_metrics
from sloop.table import TableError
from sloop.tables import Tables

log = logging.getLogger(__name__)

DEBUG_VIEW_KEY_TEMPLATE_FILE = "debugviewkey.html"
DEBUG_LIST_KEYS_TEMPLATE_FILE = "debuglistkeys.html"
DEBUG_CONFIG_TEMPLATE_FILE = "debugconfig.html"
INDEX_TEMPLATE_FILE = "index.html"
RESOURCE_TEMPLATE_FILE = "resource.html"

QUERY_PARAM = "query"
NAMESPACE_PARAM = "namespace"
NAME_PARAM = "name"
KIND_PARAM = "kind"
UUID_PARAM = "uuid"
CLICK_TIME_PARAM = "click"

REQUEST_ID_HEADER = "X-Request-Id"
_REQUEST_ID_ENVIRON_KEY = "sloop.request_id"

QueryRunner = Callable[[str, Mapping[str, Any], Tables, timedelta, str], bytes]


@dataclass
class WebConfig:
    """Settings of the web server."""

    port: int = 0
    web_files_path: str = ""
    default_namespace: str = ""
    default_lookback: str = ""
    default_resources: str = ""
    max_lookback: timedelta = timedelta(0)
    config_yaml: str = ""
    resource_links: List[ResourceLinkTemplate] = field(default_factory=list)
    left_bar_links: List[LinkTemplate] = field(default_factory=list)
    current_context: str = ""
    query_runner: Optional[QueryRunner] = None


class _Html(str):
    """Text that templates insert without escaping."""

    def __html__(self) -> str:
        return str(self)


def json_pretty_print(text: str) -> str:
    """Indent a JSON document by two spaces; return it unchanged if not valid JSON."""

    def reject(name: str) -> None:
        raise ValueError(f"invalid JSON constant {name}")

    try:
        json.loads(text, parse_constant=reject)
    except ValueError:
        return text

    out: List[str] = []
    depth = 0
    in_string = escaped = need_indent = False
    for ch in text:
        if in_string:
            out.append(ch)
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch in " \t\r\n":
            continue
        if need_indent and ch not in "]}":
            depth += 1
            out.append("\n" + "  " * depth)
            need_indent = False
        if ch in "]}":
            if need_indent:
                need_indent = False
            else:
                depth -= 1
                out.append("\n" + "  " * depth)
            out.append(ch)
        elif ch in "[{":
            out.append(ch)
            need_indent = True
        elif ch == ",":
            out.append(",\n" + "  " * depth)
        elif ch == ":":
            out.append(": ")
        else:
            if ch == '"':
                in_string = True
            out.append(ch)
    return "".join(out)


def _to_jsonable(value: Any) -> Any:
    if isinstance(value, Message):
        return json_format.MessageToDict(value)
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if isinstance(value, (bytes, bytearray)):
        try:
            text = bytes(value).decode("utf-8")
        except UnicodeDecodeError:
            return base64.b64encode(bytes(value)).decode("ascii")
        try:
            return json.loads(text)
        except ValueError:
            return text
    return value


def _payload_text(value: Any) -> str:
    payload = getattr(value, "payload", value)
    if isinstance(payload, (bytes, bytearray)):
        return bytes(payload).decode("utf-8", errors="replace")
    return str(payload)


def _request_url(request: Request) -> str:
    query = request.query_string.decode("latin-1")
    return request.path + (f"?{query}" if query else "")


def _request_id(request: Request) -> str:
    return request.environ.get(_REQUEST_ID_ENVIRON_KEY, "unknown")


def _web_error(err: Any, note: str, request: Request) -> Response:
    message = f'Error rendering url: "{_request_url(request)}".  Note: {note}. Error: {err}'
    log.error("%s", message)
    response = Response(message + "\n", status=500, content_type="text/plain; charset=utf-8")
    response.headers["X-Content-Type-Options"] = "nosniff"
    return response


class WebApp:
    """The WSGI application serving every page of the site."""

    def __init__(self, config: WebConfig, tables: Tables):
        self.config = config
        self.tables = tables
        self.request_count = 0
        self._count_lock = threading.Lock()
        self._templates = jinja2.Environment(
            loader=jinja2.FileSystemLoader(config.web_files_path), autoescape=True
        )
        self._exact: Dict[str, Callable[[Request], Response]] = {
            "/data": self._query,
            "/resource": self._resource,
            "/healthz": self._health,
            "/metrics": self._metrics,
        }
        subtrees = {
            "/webfiles/": self._web_file,
            "/debug/": self._list_keys,
            "/debug/view/": self._view_key,
            "/debug/config/": self._debug_config,
            "/": self._index,
        }
        self._subtrees = sorted(subtrees.items(), key=lambda item: len(item[0]), reverse=True)

    def __call__(self, environ, start_response):
        request = Request(environ)
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(time.time_ns() // 1000)
        environ[_REQUEST_ID_ENVIRON_KEY] = request_id
        with self._count_lock:
            self.request_count += 1
        started = time.monotonic()
        response = self._dispatch(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        log.info(
            "reqId: %s http url: %s took: %s remote: %s useragent: %s",
            request_id,
            _request_url(request),
            timedelta(seconds=time.monotonic() - started),
            request.remote_addr,
            request.user_agent.string,
        )
        return response(environ, start_response)

    def _dispatch(self, request: Request) -> Response:
        path = request.path
        handler = self._exact.get(path)
        if handler is not None:
            return handler(request)
        if any(prefix == path + "/" for prefix, _ in self._subtrees):
            query = request.query_string.decode("latin-1")
            location = path + "/" + (f"?{query}" if query else "")
            return Response(status=301, headers={"Location": location})
        for prefix, subtree_handler in self._subtrees:
            if path.startswith(prefix):
                return subtree_handler(request)
        return Response("404 page not found\n", status=404, content_type="text/plain; charset=utf-8")

    def _render(self, request: Request, name: str, data: Dict[str, Any], parse_note: str) -> Response:
        try:
            template = self._templates.get_template(name)
        except jinja2.TemplateError as exc:
            return _web_error(exc, parse_note, request)
        try:
            body = template.render(**data)
        except jinja2.TemplateError as exc:
            return _web_error(exc, "Template.ExecuteTemplate failed", request)
        return Response(body, content_type="text/html; charset=utf-8")

    def _web_file(self, request: Request) -> Response:
        url = _request_url(request)
        fixed = url[len("/webfiles"):] if url.startswith("/webfiles") else url
        if ".." in fixed:
            return _web_error(None, "Not allowed", request)
        full_path = os.path.join(self.config.web_files_path, fixed.lstrip("/"))
        try:
            with open(full_path, "rb") as handle:
                data = handle.read()
        except OSError as exc:
            return _web_error(exc, "Error reading web file: " + fixed, request)
        content_type, _ = mimetypes.guess_type(full_path)
        log.debug("webFileHandler successfully returned file %s for %s", fixed, url)
        return Response(data, content_type=content_type or "application/octet-stream")

    def _query(self, request: Request) -> Response:
        runner = self.config.query_runner
        if runner is None:
            return _web_error("no query runner configured", "Failed to run query", request)
        query_name = request.args.get(QUERY_PARAM, "")
        try:
            data = runner(
                query_name, request.args, self.tables, self.config.max_lookback, _request_id(request)
            )
        except Exception as exc:
            return _web_error(exc, "Failed to run query", request)
        return Response(data, content_type="application/json")

    def _health(self, request: Request) -> Response:
        return Response("OK", status=200, content_type="text/plain; charset=utf-8")

    def _metrics(self, request: Request) -> Response:
        with store_metrics._lock:
            rows = [
                ("sloop_webserver_request_count", "counter", self.request_count),
                ("sloop_gc_run_count", "counter", store_metrics.gc_run_count),
                ("sloop_gc_cleanup_performed_count", "counter", store_metrics.gc_cleanup_performed_count),
                ("sloop_failed_gc_count", "counter", store_metrics.gc_failed_count),
                ("sloop_store_sizeondiskmb", "gauge", store_metrics.store_size_on_disk_mb),
                ("sloop_badger_keys", "gauge", store_metrics.badger_keys),
                ("sloop_badger_tables", "gauge", store_metrics.badger_tables),
                ("sloop_badger_lsmsizemb", "gauge", store_metrics.badger_lsm_size_mb),
                ("sloop_badger_vlogsizemb", "gauge", store_metrics.badger_vlog_size_mb),
            ]
        body = "".join(f"# TYPE {name} {kind}\n{name} {value}\n" for name, kind, value in rows)
        return Response(body, content_type="text/plain; version=0.0.4; charset=utf-8")

    def _index(self, request: Request) -> Response:
        try:
            template = self._templates.get_template(INDEX_TEMPLATE_FILE)
        except jinja2.TemplateError as exc:
            return _web_error(exc, "Template.New failed", request)
        try:
            left_bar_links = make_left_bar_links(self.config.left_bar_links)
        except TemplateError as exc:
            return _web_error(exc, "Could not make left bar links", request)
        data = {
            "default_lookback": self.config.default_lookback,
            "default_namespace": self.config.default_namespace,
            "default_kind": self.config.default_resources,
            "current_context": self.config.current_context,
            "left_bar_links": left_bar_links,
        }
        try:
            body = template.render(**data)
        except jinja2.TemplateError as exc:
            return _web_error(exc, "Template.ExecuteTemplate failed", request)
        return Response(body, content_type="text/html; charset=utf-8")

    def _resource(self, request: Request) -> Response:
        try:
            template = self._templates.get_template(RESOURCE_TEMPLATE_FILE)
        except jinja2.TemplateError as exc:
            return _web_error(exc, "Template.New failed", request)
        query = request.args
        namespace = clean_string_from_param(query, NAMESPACE_PARAM, "")
        name = clean_string_from_param(query, NAME_PARAM, "")
        kind = clean_string_from_param(query, KIND_PARAM, "")
        uuid = clean_string_from_param(query, UUID_PARAM, "")
        try:
            click_time = time_from_unix_time_param(query, CLICK_TIME_PARAM, None, TimeUnit.MILLISECOND)
        except ParamError as exc:
            return _web_error(exc, "Invalid click time", request)
        if click_time is None:
            return _web_error(None, "Invalid click time", request)
        try:
            links = make_resource_links(namespace, name, kind, self.config.resource_links)
        except TemplateError as exc:
            return _web_error(exc, "Error creating external links", request)
        data_params = (
            f"?query=GetEventData&namespace={namespace}&lookback=5m&kind={kind}&name={name}"
        )
        data = {
            "namespace": namespace,
            "name": name,
            "kind": kind,
            "uuid": uuid,
            "click_time": click_time,
            "self_url": _request_url(request),
            "links": links,
            "events_url": "/data" + data_params,
        }
        try:
            body = template.render(**data)
        except jinja2.TemplateError as exc:
            return _web_error(exc, "Template.ExecuteTemplate failed", request)
        return Response(body, content_type="text/html; charset=utf-8")

    def _view_key(self, request: Request) -> Response:
        key = request.values.get("k", "")
        tables = self.tables
        lookups = [
            (WatchTableKey, tables.watch_table),
            (ResourceSummaryKey, tables.resource_summary_table),
            (EventCountKey, tables.event_count_table),
            (WatchActivityKey, tables.watch_activity_table),
        ]
        extra_name, extra_value = "", _Html("")
        try:
            with tables.db.view() as txn:
                for key_type, table in lookups:
                    try:
                        key_type.validate_key(key)
                    except KeyParseError:
                        continue
                    value = table.get(txn, key)
                    if key_type is WatchTableKey:
                        extra_name = "$.Payload"
                        extra_value = _Html(json_pretty_print(_payload_text(value)))
                    break
                else:
                    raise ValueError(f"Invalid key: {key}")
        except (StoreError, TableError, ValueError) as exc:
            return _web_error(exc, "view transaction failed", request)
        try:
            payload = json.dumps(_to_jsonable(value), indent=2)
        except (TypeError, ValueError) as exc:
            return _web_error(exc, f"Failed to marshal kubeWatchResult for key: {key}", request)
        data = {
            "key": key,
            "payload": _Html(payload),
            "extra_name": extra_name,
            "extra_value": extra_value,
        }
        return self._render(request, DEBUG_VIEW_KEY_TEMPLATE_FILE, data, "failed to parse template")

    def _list_keys(self, request: Request) -> Response:
        query = request.args
        table = clean_string_from_param(query, "table", "")
        try:
            key_regex = re.compile(query.get("keymatch", ""))
        except re.error as exc:
            return _web_error(exc, "Invalid regex", request)
        max_rows = number_from_param(query, "maxrows", 500)
        prefix = f"/{table}/"
        keys: List[str] = []
        try:
            with self.tables.db.view() as txn, txn.iterator(prefix=prefix) as it:
                it.seek(prefix)
                while it.valid_for_prefix(prefix):
                    this_key = it.item().key
                    if key_regex.search(this_key):
                        keys.append(this_key)
                        if len(keys) >= max_rows:
                            log.info("Reached max rows: %s", max_rows)
                            break
                    it.next()
        except StoreError as exc:
            return _web_error(exc, "Could not list keys", request)
        return self._render(request, DEBUG_LIST_KEYS_TEMPLATE_FILE, {"keys": keys}, "failed to parse template")

    def _debug_config(self, request: Request) -> Response:
        return self._render(
            request,
            DEBUG_CONFIG_TEMPLATE_FILE,
            {"config": self.config.config_yaml},
            "failed to parse template",
        )


def run(config: WebConfig, tables: Tables) -> None:
    """Serve the site until SIGINT or SIGTERM, then shut down gracefully."""
    app = WebApp(config, tables)
    server = make_server("", config.port, app, threaded=True)
    stop = threading.Event()
    handled: Sequence[signal.Signals] = (signal.SIGINT, signal.SIGTERM)
    previous = {sig: signal.signal(sig, lambda *_: stop.set()) for sig in handled}
    thread = threading.Thread(target=server.serve_forever, name="webserver", daemon=True)
    thread.start()
    log.info("Listening on http://localhost:%s", config.port)
    try:
        while not stop.wait(0.5):
            pass
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)
        log.info("Shutting down server...")
        server.shutdown()
        thread.join(5)
        log.info("WebServer closed")