"""
从 .proto 原始文本中提取带 google.api.http 注解的服务与方法

不依赖完整的语法解析：用正则定位声明，用括号配对取出声明体。
输入不完整或格式异常时不会报错，只会得到更小的结果。
"""
import logging
import re
from typing import List, NamedTuple, Optional

from protoc_gen_rest_adapter import util
from protoc_gen_rest_adapter.template import HTTP_VERBS, HttpBinding, MethodDesc, ServiceDesc

logger = logging.getLogger(__name__)

HTTP_OPTION_MARKER = "google.api.http"

PACKAGE_PATTERN = re.compile(r"^\s*package\s+([\w.]+)\s*;", re.MULTILINE)
SERVICE_PATTERN = re.compile(r"service\s+(\w+)\s*\{")
RPC_PATTERN = re.compile(r"rpc\s+(\w+)\s*\(\s*(\w+)\s*\)\s*returns\s*\(\s*([\w.]+)\s*\)\s*\{")
BODY_PATTERN = re.compile(r"\bbody\s*:\s*[\"']([^\"']+)[\"']")
VERB_PATTERNS = [
    (verb, re.compile(verb.lower() + r"\s*:\s*[\"']([^\"']+)[\"']", re.IGNORECASE))
    for verb in HTTP_VERBS
]


class ServiceMatch(NamedTuple):
    name: str
    body: str


def extract_package_name(text: str) -> str:
    match = PACKAGE_PATTERN.search(text)
    return match.group(1) if match else ""


def extract_services(text: str) -> List[ServiceMatch]:
    """找出所有 service 声明及其声明体"""
    services: List[ServiceMatch] = []
    for match in SERVICE_PATTERN.finditer(text):
        body = util.extract_balanced(text, match.end())
        if body:
            services.append(ServiceMatch(match.group(1), body))

    return services


def extract_methods(service_body: str) -> List[MethodDesc]:
    """找出服务体中带 HTTP 注解的 rpc 方法，没有注解的方法被忽略"""
    methods: List[MethodDesc] = []
    for match in RPC_PATTERN.finditer(service_body):
        options = util.extract_balanced(service_body, match.end())
        binding = parse_http_binding(options)
        if binding is None:
            logger.debug("rpc %s has no http binding, skipped", match.group(1))
            continue

        methods.append(MethodDesc(
            name=match.group(1),
            input_type=match.group(2),
            output_type=match.group(3),
            binding=binding,
        ))

    return methods


def parse_http_binding(options: str) -> Optional[HttpBinding]:
    """
    解析方法选项块中的 google.api.http 注解

    按 GET, POST, PUT, PATCH, DELETE 的顺序匹配，第一个匹配到的动词生效。
    body 字段单独匹配，与动词无关。
    """
    if HTTP_OPTION_MARKER not in options:
        return None

    for verb, pattern in VERB_PATTERNS:
        match = pattern.search(options)
        if match is None:
            continue

        body_match = BODY_PATTERN.search(options)
        return HttpBinding(
            verb=verb,
            path=match.group(1),
            body=body_match.group(1) if body_match else None,
        )

    return None


def parse_proto_file(text: str) -> List[ServiceDesc]:
    package_name = extract_package_name(text)

    services: List[ServiceDesc] = []
    for service in extract_services(text):
        methods = extract_methods(service.body)
        if not methods:
            logger.debug("service %s has no http bound methods, skipped", service.name)
            continue

        services.append(ServiceDesc(
            package_name=package_name,
            service_name=service.name,
            methods=tuple(methods),
        ))

    return services


def parse_proto_files(texts: List[str]) -> List[ServiceDesc]:
    """依次解析多个文件，结果按输入顺序拼接，不去重"""
    services: List[ServiceDesc] = []
    for text in texts:
        services.extend(parse_proto_file(text))

    return services
