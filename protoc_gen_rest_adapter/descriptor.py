import logging
from typing import Dict, List, Optional

import google.api.annotations_pb2
from google.api.http_pb2 import HttpRule
from google.protobuf.compiler.plugin_pb2 import CodeGeneratorRequest, CodeGeneratorResponse
from google.protobuf.descriptor_pb2 import FileDescriptorProto, MethodDescriptorProto, ServiceDescriptorProto

from protoc_gen_rest_adapter import generator
from protoc_gen_rest_adapter.template import HTTP_VERBS, HttpBinding, MethodDesc, ServiceDesc

logger = logging.getLogger(__name__)


def parse_parameter(parameter: str) -> Dict[str, str]:
    """解析插件参数 key=value,key=value"""
    values: Dict[str, str] = {}
    if not parameter:
        return values
    for chunk in parameter.split(","):
        key, _, value = chunk.partition("=")
        key = key.strip()
        if not key:
            continue
        values[key] = value.strip()
    return values


def generate_code(request: CodeGeneratorRequest) -> CodeGeneratorResponse:
    """由 protoc 的描述符生成适配器，结果写入单个文件"""
    response = CodeGeneratorResponse()
    response.supported_features = CodeGeneratorResponse.FEATURE_PROTO3_OPTIONAL

    parameters = parse_parameter(request.parameter)
    filename = parameters.get("out") or generator.OUTPUT_FILENAME
    # protoc 只接受相对于输出目录的路径
    if filename.startswith("/") or ".." in filename.split("/"):
        raise generator.GeneratorError(f"invalid output file name: {filename}")

    files_to_generate = set(request.file_to_generate)

    services: List[ServiceDesc] = []
    for proto_file in request.proto_file:
        if proto_file.name not in files_to_generate:
            continue
        services.extend(build_services(proto_file))

    result = generator.generate_from_services(services)

    gen = response.file.add()
    gen.name = filename
    gen.content = result.content

    logger.info("found %d service(s) with %d method(s)", len(result.services), result.method_count)
    return response


def build_services(proto_file: FileDescriptorProto) -> List[ServiceDesc]:
    services: List[ServiceDesc] = []
    for service in proto_file.service:
        service_desc = build_service(proto_file, service)
        if service_desc is None:
            continue
        services.append(service_desc)

    return services


def build_service(proto_file: FileDescriptorProto, service: ServiceDescriptorProto) -> Optional[ServiceDesc]:
    methods: List[MethodDesc] = []
    for method in service.method:
        method_desc = build_method(method)
        if method_desc is None:
            continue
        methods.append(method_desc)

    if not methods:
        logger.debug("service %s has no http bound methods, skipped", service.name)
        return None

    return ServiceDesc(
        package_name=proto_file.package,
        service_name=service.name,
        methods=tuple(methods),
    )


def build_method(m: MethodDescriptorProto) -> Optional[MethodDesc]:
    if not m.options.HasExtension(google.api.annotations_pb2.http):
        return None

    http = m.options.Extensions[google.api.annotations_pb2.http]
    assert isinstance(http, HttpRule)

    binding = build_binding(http)
    if binding is None:
        return None

    input_type = m.input_type
    if input_type.startswith('.'):
        input_type = input_type[1:]
    output_type = m.output_type
    if output_type.startswith('.'):
        output_type = output_type[1:]

    return MethodDesc(
        name=m.name,
        input_type=input_type.split('.')[-1],
        output_type=output_type,
        binding=binding,
    )


def build_binding(http: HttpRule) -> Optional[HttpBinding]:
    """按固定顺序取第一个非空的动词；自定义动词不支持"""
    for verb in HTTP_VERBS:
        path = getattr(http, verb.lower())
        if path:
            return HttpBinding(verb=verb, path=path, body=http.body or None)

    return None
