from dataclasses import dataclass
from typing import List, Optional, Tuple

from protoc_gen_rest_adapter import util

# 固定的匹配顺序，同一注解内先匹配到的动词生效
HTTP_VERBS: Tuple[str, ...] = ("GET", "POST", "PUT", "PATCH", "DELETE")


@dataclass(frozen=True)
class HttpBinding:
    verb: str
    path: str
    body: Optional[str] = None


@dataclass(frozen=True)
class MethodDesc:
    name: str
    input_type: str
    output_type: str
    binding: HttpBinding

    @property
    def snake_case_name(self) -> str:
        return util.pascal_case_to_snake_case(self.name)

    def rpc_path(self, service: "ServiceDesc") -> str:
        """RPC调用路径，如 /users.v1.UserService/GetUser"""
        return f"/{service.full_name}/{self.name}"


@dataclass(frozen=True)
class ServiceDesc:
    package_name: str
    service_name: str
    methods: Tuple[MethodDesc, ...] = ()

    @property
    def full_name(self) -> str:
        if self.package_name:
            return f"{self.package_name}.{self.service_name}"
        return self.service_name

    @property
    def pascal_case_name(self) -> str:
        return util.full_name_to_pascal_case(self.full_name)


HEADER = "# Code generated by protoc-gen-rest-adapter. DO NOT EDIT."

IMPORTS = '''\
"""REST adapter for RPC services annotated with google.api.http."""
import json
import re
from typing import Any, Callable, Dict, Iterator, List, Mapping, NamedTuple, Optional, Sequence, Tuple

from google.protobuf import json_format
'''

RUNTIME = r'''

_PLACEHOLDER = re.compile(r"\{([^{}=]+)(?:=([^{}]*))?\}")

# google.rpc.Code -> HTTP status
HTTP_STATUS_BY_RPC_CODE: Dict[str, int] = {
    "OK": 200,
    "CANCELLED": 499,
    "UNKNOWN": 500,
    "INVALID_ARGUMENT": 400,
    "DEADLINE_EXCEEDED": 504,
    "NOT_FOUND": 404,
    "ALREADY_EXISTS": 409,
    "PERMISSION_DENIED": 403,
    "UNAUTHENTICATED": 401,
    "RESOURCE_EXHAUSTED": 429,
    "FAILED_PRECONDITION": 400,
    "ABORTED": 409,
    "OUT_OF_RANGE": 400,
    "UNIMPLEMENTED": 501,
    "INTERNAL": 500,
    "UNAVAILABLE": 503,
    "DATA_LOSS": 500,
}


class BadRequest(Exception):
    pass


class RestRequest:
    def __init__(self, method: str, path: str, query: Optional[Mapping[str, Sequence[str]]] = None,
                 body: bytes = b""):
        self.method = method.upper()
        self.path = path
        self.query = query or {}
        self.body = body


class RestResponse:
    def __init__(self, status: int, body: bytes = b"", headers: Optional[Dict[str, str]] = None):
        self.status = status
        self.body = body
        self.headers = headers if headers is not None else {"content-type": "application/json"}

    def json(self) -> Any:
        if not self.body:
            return None
        return json.loads(self.body)


def json_response(status: int, payload: Any, headers: Optional[Dict[str, str]] = None) -> RestResponse:
    response = RestResponse(status, json.dumps(payload).encode("utf-8"))
    if headers:
        response.headers.update(headers)
    return response


def error_response(status: int, error: str, message: str, headers: Optional[Dict[str, str]] = None) -> RestResponse:
    return json_response(status, {"error": error, "message": message}, headers)


def default_error_handler(exc: Exception) -> RestResponse:
    """Map an RPC failure to an HTTP response using its status code, if it has one."""
    code = getattr(exc, "code", None)
    if callable(code):
        code = code()
    name = getattr(code, "name", code)
    status = 500
    if isinstance(name, str):
        status = HTTP_STATUS_BY_RPC_CODE.get(name.upper(), 500)
    return error_response(status, type(exc).__name__, str(exc))


class PathTemplate:
    """Matches concrete paths against a template with {name} placeholders."""

    def __init__(self, template: str):
        self.template = template
        self.variables: List[str] = []
        pattern = ""
        pos = 0
        for match in _PLACEHOLDER.finditer(template):
            pattern += re.escape(template[pos:match.start()])
            self.variables.append(match.group(1).strip())
            pattern += "(" + _segment_pattern(match.group(2)) + ")"
            pos = match.end()
        pattern += re.escape(template[pos:])
        self._regex = re.compile(pattern)

    def match(self, path: str) -> Optional[Dict[str, str]]:
        result = self._regex.fullmatch(path)
        if result is None:
            return None
        return dict(zip(self.variables, result.groups()))


def _segment_pattern(segments: Optional[str]) -> str:
    # {name} == {name=*}
    if not segments:
        return "[^/]+"
    parts = []
    for part in segments.strip().split("/"):
        if part == "**":
            parts.append(".+")
        elif part == "*":
            parts.append("[^/]+")
        else:
            parts.append(re.escape(part))
    return "/".join(parts)


class Route(NamedTuple):
    verb: str
    template: PathTemplate
    handler: Callable[[RestRequest, Dict[str, str]], Any]
    rpc_path: str


def _set_field(payload: Dict[str, Any], name: str, value: Any) -> None:
    parts = name.split(".")
    target = payload
    for part in parts[:-1]:
        child = target.get(part)
        if not isinstance(child, dict):
            child = {}
            target[part] = child
        target = child
    target[parts[-1]] = value


def _merge_query(payload: Dict[str, Any], query: Mapping[str, Sequence[str]]) -> None:
    for key, values in query.items():
        if isinstance(values, str):
            values = [values]
        values = list(values)
        if not values:
            continue
        _set_field(payload, key, values[0] if len(values) == 1 else values)


def _parse_body(body: bytes) -> Any:
    if not body:
        return {}
    try:
        return json.loads(body)
    except ValueError as e:
        raise BadRequest(f"invalid JSON body: {e}") from e


# Messages with a free-form JSON mapping, left untouched.
_JSON_MESSAGES = ("google.protobuf.Struct", "google.protobuf.Value", "google.protobuf.ListValue")

_BOOL_STRINGS = {"true": True, "false": False}


def _is_map_field(field: Any) -> bool:
    return field.message_type is not None and field.message_type.GetOptions().map_entry


def _coerce_value(field: Any, value: Any) -> Any:
    if field.type == field.TYPE_BOOL and isinstance(value, str):
        return _BOOL_STRINGS.get(value.lower(), value)
    if field.message_type is not None and isinstance(value, dict):
        _coerce_payload(value, field.message_type)
    return value


def _coerce_payload(payload: Dict[str, Any], descriptor: Any) -> None:
    """Align string values from the path and query with the field types of a message."""
    if descriptor.full_name in _JSON_MESSAGES:
        return
    fields = {}
    for field in descriptor.fields:
        fields[field.name] = field
        fields[field.json_name] = field

    for key, value in payload.items():
        field = fields.get(key)
        if field is None or _is_map_field(field):
            continue
        if field.label == field.LABEL_REPEATED:
            if not isinstance(value, list):
                value = [value]
            payload[key] = [_coerce_value(field, item) for item in value]
        else:
            payload[key] = _coerce_value(field, value)


class ServiceRestAdapter:
    SERVICE_NAME = ""
    # (verb, path template, handler, rpc path)
    ROUTES: Tuple[Tuple[str, str, str, str], ...] = ()

    def __init__(self, client: Any, messages: Any,
                 error_handler: Optional[Callable[[Exception], RestResponse]] = None):
        self.client = client
        self.messages = messages
        self.error_handler = error_handler or default_error_handler
        self.routes = [
            Route(verb, PathTemplate(template), getattr(self, handler), rpc_path)
            for verb, template, handler, rpc_path in self.ROUTES
        ]

    def _new_message(self, type_name: str, payload: Dict[str, Any]) -> Any:
        message_class = getattr(self.messages, type_name)
        _coerce_payload(payload, message_class.DESCRIPTOR)
        try:
            return json_format.ParseDict(payload, message_class(), ignore_unknown_fields=True)
        except json_format.ParseError as e:
            raise BadRequest(str(e)) from e

    async def _invoke(self, method_name: str, message: Any) -> RestResponse:
        rpc = getattr(self.client, method_name)
        try:
            result = await rpc(message)
        except Exception as e:
            return self.error_handler(e)
        return json_response(200, json_format.MessageToDict(result, preserving_proto_field_name=True))

    async def dispatch(self, request: RestRequest) -> RestResponse:
        return await RestAdapter(self).dispatch(request)


class RestAdapter:
    """Dispatches REST requests across service adapters, first matching route wins."""

    def __init__(self, *adapters: ServiceRestAdapter):
        self.adapters = adapters

    def routes(self) -> Iterator[Route]:
        for adapter in self.adapters:
            yield from adapter.routes

    async def dispatch(self, request: RestRequest) -> RestResponse:
        allowed: List[str] = []
        for route in self.routes():
            captures = route.template.match(request.path)
            if captures is None:
                continue
            if route.verb != request.method:
                if route.verb not in allowed:
                    allowed.append(route.verb)
                continue
            try:
                return await route.handler(request, captures)
            except BadRequest as e:
                return error_response(400, "BadRequest", str(e))

        if allowed:
            return error_response(405, "MethodNotAllowed", f"{request.method} {request.path}",
                                  {"allow": ", ".join(allowed)})
        return error_response(404, "NotFound", f"{request.method} {request.path}")
'''


def execute(services: List[ServiceDesc]) -> str:
    """生成适配器模块源码，相同输入得到相同输出"""
    lines: List[str] = [HEADER]
    method_count = sum(len(service.methods) for service in services)
    lines.append(f"# services: {len(services)}, methods: {method_count}")
    for service in services:
        lines.append(f"#   {service.full_name}")

    lines.append(IMPORTS.rstrip("\n"))
    lines.append(RUNTIME.rstrip("\n"))

    class_names: List[str] = []
    for service in services:
        class_name = _class_name(service, class_names)
        class_names.append(class_name)
        lines.append("")
        lines.append("")
        lines.extend(build_service(service, class_name))

    lines.append("")
    lines.append("")
    lines.append("SERVICE_ADAPTERS: Tuple[Tuple[str, type], ...] = (")
    for service, class_name in zip(services, class_names):
        lines.append(f"    ({service.full_name!r}, {class_name}),")
    lines.append(")")

    return "\n".join(lines) + "\n"


def _unique_name(name: str, taken: List[str]) -> str:
    if not name.isidentifier():
        name = "_" + name
    # 同名不合并，追加序号保持模块合法
    candidate = name
    index = 2
    while candidate in taken:
        candidate = f"{name}{index}"
        index += 1
    return candidate


def _class_name(service: ServiceDesc, taken: List[str]) -> str:
    return _unique_name(service.pascal_case_name + "RestAdapter", taken)


def build_service(service: ServiceDesc, class_name: str) -> List[str]:
    handler_names: List[str] = []
    for method in service.methods:
        handler_names.append(_unique_name(f"handle_{method.snake_case_name}", handler_names))

    lines = [
        f"class {class_name}(ServiceRestAdapter):",
        f"    SERVICE_NAME = {service.full_name!r}",
        "    ROUTES = (",
    ]
    for method, handler_name in zip(service.methods, handler_names):
        route = (method.binding.verb, method.binding.path, handler_name, method.rpc_path(service))
        lines.append(f"        {route!r},")
    lines.append("    )")

    for method, handler_name in zip(service.methods, handler_names):
        lines.append("")
        lines.extend(build_handler(method, handler_name))

    return lines


def build_handler(method: MethodDesc, handler_name: str) -> List[str]:
    binding = method.binding
    path = " ".join(binding.path.split())
    lines = [
        f"    # {binding.verb} {path} -> {method.name}({method.input_type}) returns ({method.output_type})",
        f"    async def {handler_name}(self, request: RestRequest, captures: Dict[str, str]) -> RestResponse:",
    ]

    if binding.body is None:
        lines.append("        payload: Dict[str, Any] = {}")
        lines.append("        _merge_query(payload, request.query)")
    elif binding.body == "*":
        lines.append("        payload = _parse_body(request.body)")
        lines.append("        if not isinstance(payload, dict):")
        lines.append('            raise BadRequest("request body must be a JSON object")')
    else:
        lines.append("        payload = {}")
        lines.append(f"        _set_field(payload, {binding.body!r}, _parse_body(request.body))")

    lines.append("        for name, value in captures.items():")
    lines.append("            _set_field(payload, name, value)")
    lines.append(f"        message = self._new_message({method.input_type!r}, payload)")
    lines.append(f"        return await self._invoke({method.name!r}, message)")
    return lines
