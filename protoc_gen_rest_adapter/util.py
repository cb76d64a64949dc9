from typing import Tuple


def _scan(text: str, start: int, open_char: str, close_char: str) -> Tuple[int, int]:
    depth = 1
    i = start
    while i < len(text) and depth > 0:
        char = text[i]
        if char == open_char:
            depth += 1
        elif char == close_char:
            depth -= 1
        i += 1

    return i, depth


def scan_balanced(text: str, start: int, open_char: str = "{", close_char: str = "}") -> int:
    """
    查找与已消费的起始分隔符配对的结束位置

    Args:
        text: 原始文本
        start: 紧跟在起始分隔符之后的位置，初始深度为1
        open_char: 起始分隔符
        close_char: 结束分隔符

    Returns:
        使深度归零的分隔符之后的位置；未闭合时返回文本长度

    字符串字面量中的分隔符同样计数。
    """
    end, _ = _scan(text, start, open_char, close_char)
    return end


def extract_balanced(text: str, start: int, open_char: str = "{", close_char: str = "}") -> str:
    """取出分隔符之间的内容，不含结束分隔符"""
    end, depth = _scan(text, start, open_char, close_char)
    if depth == 0:
        return text[start:end - 1]
    return text[start:end]


def pascal_case_to_snake_case(v: str) -> str:
    """将大驼峰转换为蛇形"""
    snake_case_name = ""
    for i, char in enumerate(v):
        if i > 0 and char.isupper() and not v[i - 1].isupper() and v[i - 1] != "_":
            snake_case_name += "_"
        snake_case_name += char.lower()

    return snake_case_name


def snake_case_to_pascal_case(v: str) -> str:
    """将蛇形转换为大驼峰"""
    words = v.split("_")
    pascal_case_name = "".join(word[:1].upper() + word[1:] for word in words)
    return pascal_case_name


def full_name_to_pascal_case(v: str) -> str:
    """将'.'连接的全限定名转换为大驼峰，如 users.v1.UserService -> UsersV1UserService"""
    return "".join(snake_case_to_pascal_case(part) for part in v.split("."))
