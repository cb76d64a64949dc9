import argparse
import json
import logging
import os
import sys
from typing import Any, Dict, List, Optional

from google.protobuf.compiler import plugin_pb2 as plugin

if __package__ is None and not hasattr(sys, "frozen"):
    path = os.path.realpath(os.path.abspath(__file__))
    sys.path.insert(0, os.path.dirname(os.path.dirname(path)))
from protoc_gen_rest_adapter import descriptor, generator
from protoc_gen_rest_adapter.generator import GeneratorError

__version__ = "1.0.0"

logger = logging.getLogger("protoc_gen_rest_adapter")


def setup_logging(verbose: bool = False) -> None:
    # stdout 用于插件输出，日志只写 stderr
    logging.basicConfig(
        stream=sys.stderr,
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )


def build_arg_parser() -> argparse.ArgumentParser:
    arg_parser = argparse.ArgumentParser(
        prog="rest-adapter",
        description="Generate a REST adapter for RPC services annotated with google.api.http.",
        epilog="examples:\n"
               "  rest-adapter --local ./proto --out ./src/generated\n"
               "  cat proto/user.proto | rest-adapter",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    arg_parser.add_argument("proto_dir", nargs="?", default="./proto",
                            help="directory with .proto files (local mode, default: ./proto)")
    arg_parser.add_argument("-l", "--local", action="store_true", help="process local proto files")
    arg_parser.add_argument("-o", "--out", default="./generated", help="output directory (default: ./generated)")
    arg_parser.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")
    arg_parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return arg_parser


def read_proto_files(proto_dir: str) -> List[str]:
    """递归读取目录下的 .proto 文件，按路径排序"""
    if not os.path.isdir(proto_dir):
        raise GeneratorError(f"Proto directory not found: {proto_dir}")

    contents: List[str] = []
    for root, dirs, files in os.walk(proto_dir):
        dirs.sort()
        for name in sorted(files):
            if not name.endswith(".proto"):
                continue
            with open(os.path.join(root, name), encoding="utf-8") as f:
                contents.append(f.read())

    if not contents:
        raise GeneratorError("No .proto files found")
    return contents


def process_local(proto_dir: str, output_dir: str) -> str:
    """本地模式：没有可生成的服务时视为失败"""
    result = generator.generate(read_proto_files(proto_dir)).require_services()

    os.makedirs(output_dir, exist_ok=True)
    output_path = os.path.join(output_dir, generator.OUTPUT_FILENAME)
    with open(output_path, "w", encoding="utf-8") as f:
        f.write(result.content)

    logger.info("Generated %s", output_path)
    logger.info("Found %d service(s) with %d method(s)", len(result.services), result.method_count)
    return output_path


def decode_plugin_input(payload: str) -> List[str]:
    """输入可以是 {"files": [...]} 形式的 JSON，否则整体视为一个 .proto 文本"""
    try:
        config = json.loads(payload)
    except ValueError:
        return [payload]

    if isinstance(config, dict) and isinstance(config.get("files"), list):
        return [content for content in config["files"] if isinstance(content, str)]
    return []


def build_plugin_response(payload: str) -> Dict[str, Any]:
    result = generator.generate(decode_plugin_input(payload))
    if result.is_empty:
        logger.warning("No services with google.api.http annotations found")

    return {
        "files": [
            {
                "name": generator.OUTPUT_FILENAME,
                "content": result.content,
            },
        ],
        "services": result.service_names,
        "methodCount": result.method_count,
    }


def handle_plugin() -> None:
    payload = sys.stdin.buffer.read().decode("utf-8")
    response = build_plugin_response(payload)
    sys.stdout.write(json.dumps(response, indent=2))


def main(argv: Optional[List[str]] = None) -> int:
    arg_parser = build_arg_parser()
    args = arg_parser.parse_args(argv)
    setup_logging(args.verbose)

    try:
        if args.local:
            process_local(args.proto_dir, args.out)
            return 0

        if not sys.stdin.isatty():
            handle_plugin()
            return 0
    except GeneratorError as e:
        logger.error("%s", e)
        return 1

    arg_parser.print_help()
    return 0


def protoc_main() -> None:
    """protoc 插件入口：标准输入读取 CodeGeneratorRequest，标准输出写 CodeGeneratorResponse"""
    setup_logging()
    request = plugin.CodeGeneratorRequest.FromString(sys.stdin.buffer.read())

    try:
        response = descriptor.generate_code(request)
    except GeneratorError as e:
        response = plugin.CodeGeneratorResponse()
        response.error = str(e)

    sys.stdout.buffer.write(response.SerializeToString())


if __name__ == "__main__":
    sys.exit(main())
