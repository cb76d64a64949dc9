import logging
from dataclasses import dataclass
from typing import List, Tuple

from protoc_gen_rest_adapter import parser, template
from protoc_gen_rest_adapter.template import ServiceDesc

logger = logging.getLogger(__name__)

OUTPUT_FILENAME = "rest_adapter.py"


class GeneratorError(Exception):
    pass


class NoServicesError(GeneratorError):
    """没有任何带 google.api.http 注解的服务"""

    def __init__(self):
        super().__init__("No services with google.api.http annotations found")


@dataclass(frozen=True)
class GenerationResult:
    content: str
    services: Tuple[ServiceDesc, ...]

    @property
    def service_names(self) -> List[str]:
        return [service.full_name for service in self.services]

    @property
    def method_count(self) -> int:
        return sum(len(service.methods) for service in self.services)

    @property
    def is_empty(self) -> bool:
        return len(self.services) == 0

    def require_services(self) -> "GenerationResult":
        if self.is_empty:
            raise NoServicesError()
        return self


def generate(texts: List[str]) -> GenerationResult:
    """解析 .proto 文本并生成 REST 适配器源码"""
    return generate_from_services(parser.parse_proto_files(texts))


def generate_from_services(services: List[ServiceDesc]) -> GenerationResult:
    content = template.execute(services)
    result = GenerationResult(content=content, services=tuple(services))
    logger.debug("generated adapter for %d service(s) with %d method(s)",
                 len(result.services), result.method_count)
    return result
